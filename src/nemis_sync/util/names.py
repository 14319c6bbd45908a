from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SplitName:
    surname: str
    firstname: str
    other_name: str


def split_names(name: str) -> SplitName:
    """
    Split a full learner name the way the portal's bio-data form expects it.

    - "kamau john mwangi" -> surname="kamau", firstname="john", other_name="mwangi"
    - "john mwangi"       -> surname=" ",     firstname="john", other_name="mwangi"
    - longer names keep the first token as surname, the last as other name and
      everything in between as the first name.
    """
    parts = (name or "").split()
    if len(parts) < 2:
        raise ValueError(f"Invalid name length: {name!r} (need at least two names)")
    if len(parts) == 2:
        # The portal rejects an empty surname field; a single space is accepted.
        return SplitName(surname=" ", firstname=parts[0], other_name=parts[1])
    if len(parts) == 3:
        return SplitName(surname=parts[0], firstname=parts[1], other_name=parts[2])
    return SplitName(surname=parts[0], firstname=" ".join(parts[1:-1]), other_name=parts[-1])


def join_names(*parts: str) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())
