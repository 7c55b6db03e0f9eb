from .finality import FinalityResult, FinalityVerifier, get_finality_verifier

__all__ = ["FinalityResult", "FinalityVerifier", "get_finality_verifier"]
