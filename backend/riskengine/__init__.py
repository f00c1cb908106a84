"""RiskLens engine — risk scoring, score velocity and cross-framework gap analysis."""

__version__ = "1.0.0"
