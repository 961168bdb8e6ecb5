# ziptrials/engine/policy.py
# Size-extension (ZIP64) policy applied when an archive is saved.

from enum import Enum


class Zip64Policy(Enum):
    """
    Controls whether the ZIP64 format extensions are written on save.

      ALWAYS       -- every entry carries ZIP64 records, whatever its size.
      NEVER        -- ZIP64 is refused; an archive that needs it fails to save.
      AS_NECESSARY -- ZIP64 is written only where a size, offset or entry
                      count crosses the classic format limits.
    """
    ALWAYS       = "Always"
    NEVER        = "Never"
    AS_NECESSARY = "AsNecessary"

    @property
    def allows_zip64(self) -> bool:
        return self is not Zip64Policy.NEVER

    @property
    def forces_zip64(self) -> bool:
        return self is Zip64Policy.ALWAYS

    @classmethod
    def parse(cls, text: str) -> "Zip64Policy":
        """Accept either the value ("AsNecessary") or the member name ("AS_NECESSARY")."""
        for member in cls:
            if text == member.value or text.upper() == member.name:
                return member
        raise ValueError(f"Unknown Zip64Policy: '{text}'")
