"""Geometry for feature-based visual SLAM: ORB descriptor matching and EPnP pose estimation."""

__version__ = "0.1.0"

__all__ = ["orb_matcher", "orb_search", "orb_bow", "epnp"]