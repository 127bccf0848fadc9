# utils/option_processor.py
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from utils.clarify_token import ClarifyOption

DEFAULT_MAX_OPTIONS = 5


def _dedupe_key(opt: ClarifyOption) -> Tuple[str, str, str, str]:
    return tuple((v or "").strip().lower() for v in (opt.canonical, opt.brand, opt.variant, opt.unit))


def process_options(raw_options: Iterable[ClarifyOption], max_options: Optional[int] = DEFAULT_MAX_OPTIONS) -> List[ClarifyOption]:
    """
    Dedupe, rank, cap and flag exactly one recommended option.

    Runs identically when a link is minted and when it is submitted, so a numeric
    choice always points at the same option. Idempotent for any input.
    """
    seen = set()
    unique: List[ClarifyOption] = []
    for opt in raw_options:
        key = _dedupe_key(opt)
        if key in seen:
            continue
        seen.add(key)
        unique.append(opt)

    # sorted() is stable: equal scores keep their original order
    ranked = sorted(unique, key=lambda o: -(o.score or 0.0))
    cap = DEFAULT_MAX_OPTIONS if max_options is None else max_options
    ranked = ranked[: max(1, int(cap))]
    if not ranked:
        return []

    rec_index = next((i for i, o in enumerate(ranked) if o.recommended), 0)
    return [o.model_copy(update={"recommended": i == rec_index}) for i, o in enumerate(ranked)]
