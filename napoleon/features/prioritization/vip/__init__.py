"""
VIP classification package.
"""

from .classifier import DEFAULT_VIP_BOOST, VIP_BOOST_TABLE, VipClassifier, boost_for_level
from .service import VipContactNotFound, VipService

__all__ = [
    "DEFAULT_VIP_BOOST",
    "VIP_BOOST_TABLE",
    "VipClassifier",
    "VipContactNotFound",
    "VipService",
    "boost_for_level",
]
