"""
AWS integrations layer.
"""
from studyroom.aws.secrets import get_secret

__all__ = ["get_secret"]
