"""Practitioner (HCP) dataset: JSON database produced by the data generator."""

from hcp_analytics.datasets.practitioners.loader import load_practitioners

__all__ = ["load_practitioners"]
