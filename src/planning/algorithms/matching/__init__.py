"""
候选评分与排序模块

评分方向:
- 救护车/医院: 越小越好，取最小者
- 志愿者/献血者: 越大越好，降序排列
"""

from .ambulance_matcher import AmbulanceMatcher, equipment_match, rank_ambulances, select_best_ambulance
from .blood_compatibility import COMPATIBLE_DONORS, compatible_donor_types, is_compatible
from .common import ScoredCandidate
from .donor_ranker import DonorRanker, is_donor_eligible, rank_donors
from .hospital_matcher import HospitalMatcher, select_best_hospital
from .volunteer_ranker import VolunteerRanker, is_volunteer_eligible, rank_volunteers

__all__ = [
    "ScoredCandidate",
    "AmbulanceMatcher",
    "equipment_match",
    "rank_ambulances",
    "select_best_ambulance",
    "HospitalMatcher",
    "select_best_hospital",
    "VolunteerRanker",
    "is_volunteer_eligible",
    "rank_volunteers",
    "DonorRanker",
    "is_donor_eligible",
    "rank_donors",
    "COMPATIBLE_DONORS",
    "compatible_donor_types",
    "is_compatible",
]
