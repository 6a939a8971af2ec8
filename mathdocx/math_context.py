# mathdocx/math_context.py
from typing import List

from .schemas import MathReplacement

TOKEN_FORMAT = "__MATH_{:06d}__"


class MathContext:
    """Hands out placeholder tokens for one document export and remembers their OMML."""

    def __init__(self):
        self.next_id, self.replacements = 1, []  # type: int, List[MathReplacement]

    def register(self, omml: str, display_mode: bool = False) -> str:
        token = TOKEN_FORMAT.format(self.next_id)
        self.next_id += 1
        self.replacements.append(MathReplacement(token=token, omml=omml, display_mode=display_mode))
        return token

    def __len__(self) -> int:
        return len(self.replacements)
