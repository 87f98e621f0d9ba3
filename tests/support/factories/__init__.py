"""Test data factories."""

from tests.support.factories.job_factory import create_job_at_stage

__all__ = ["create_job_at_stage"]
