"""
ABO/Rh 输血相容性

表为 受血者 -> 可接受的献血者血型
"""
from __future__ import annotations

from typing import Dict, FrozenSet, List

from src.domains.responders.schemas import BloodType

_B = BloodType

COMPATIBLE_DONORS: Dict[BloodType, FrozenSet[BloodType]] = {
    _B.o_neg: frozenset({_B.o_neg}),
    _B.o_pos: frozenset({_B.o_neg, _B.o_pos}),
    _B.a_neg: frozenset({_B.o_neg, _B.a_neg}),
    _B.a_pos: frozenset({_B.o_neg, _B.o_pos, _B.a_neg, _B.a_pos}),
    _B.b_neg: frozenset({_B.o_neg, _B.b_neg}),
    _B.b_pos: frozenset({_B.o_neg, _B.o_pos, _B.b_neg, _B.b_pos}),
    _B.ab_neg: frozenset({_B.o_neg, _B.a_neg, _B.b_neg, _B.ab_neg}),
    _B.ab_pos: frozenset(BloodType),
}


def compatible_donor_types(recipient: BloodType) -> List[BloodType]:
    """受血者可接受的献血者血型（按枚举顺序）"""
    allowed = COMPATIBLE_DONORS[recipient]
    return [t for t in BloodType if t in allowed]


def is_compatible(donor: BloodType, recipient: BloodType) -> bool:
    return donor in COMPATIBLE_DONORS[recipient]


__all__ = ["COMPATIBLE_DONORS", "compatible_donor_types", "is_compatible"]
