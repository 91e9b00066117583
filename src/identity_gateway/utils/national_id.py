"""
South African national ID number codec.

Validates and decodes 13-digit identity numbers laid out as YYMMDD-GGGG-SCZ:

- YYMMDD: date of birth
- GGGG:   sequence number, 0000-4999 female, 5000-9999 male
- S:      citizenship, 0 = citizen, 1 = permanent resident
- C:      historical classification digit, accepted as-is
- Z:      Luhn check digit over the preceding 12 digits

Everything here is a pure function of the input string and the injected
clock. Derived facts (date of birth, gender, citizenship) are recomputed from
the number whenever they are needed.
"""

import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional

from loguru import logger

ID_LENGTH = 13
_SEPARATORS = re.compile(r"[\s-]")
_DIGITS = re.compile(r"^[0-9]{13}$")


class NationalIdError(ValueError):
    """Base error for national ID decoding."""

    kind = "invalid"


class InvalidFormatError(NationalIdError):
    kind = "invalid_format"


class InvalidDateError(NationalIdError):
    kind = "invalid_date"


class InvalidChecksumError(NationalIdError):
    kind = "invalid_checksum"


class Gender(str, Enum):
    FEMALE = "F"
    MALE = "M"


class Citizenship(str, Enum):
    CITIZEN = "citizen"
    PERMANENT_RESIDENT = "permanent_resident"
    OTHER = "other"


@dataclass(frozen=True)
class NationalIdDetails:
    """Facts decoded from a valid ID number."""

    id_number: str
    date_of_birth: date
    gender: Gender
    citizenship: Citizenship

    @property
    def is_citizen(self) -> bool:
        return self.citizenship is Citizenship.CITIZEN


class CenturyResolver:
    """Turns a two-digit birth year into a four-digit one."""

    def resolve(self, two_digit_year: int, today: date) -> int:
        raise NotImplementedError


class RollingCenturyResolver(CenturyResolver):
    """
    Rolling window relative to the current year.

    Years up to ``(current_year % 100) - offset`` are placed in the 2000s,
    everything else in the 1900s. With the default offset of 25 a person has
    to be at least ~25 years old before a 20xx reading is chosen. The cutoff
    drifts with the calendar; use FixedPivotCenturyResolver when a stable
    pivot is required.
    """

    def __init__(self, offset: int = 25):
        self.offset = offset

    def resolve(self, two_digit_year: int, today: date) -> int:
        threshold = today.year % 100 - self.offset
        if two_digit_year <= threshold:
            return 2000 + two_digit_year
        return 1900 + two_digit_year


class FixedPivotCenturyResolver(CenturyResolver):
    """Years up to ``pivot`` are 20xx, the rest 19xx, regardless of today."""

    def __init__(self, pivot: int):
        if not 0 <= pivot <= 99:
            raise ValueError("pivot must be between 0 and 99")
        self.pivot = pivot

    def resolve(self, two_digit_year: int, today: date) -> int:
        if two_digit_year <= self.pivot:
            return 2000 + two_digit_year
        return 1900 + two_digit_year


def normalize(id_number: Optional[str]) -> str:
    """Strip whitespace and dashes; raise InvalidFormatError unless 13 ASCII digits remain."""
    if id_number is None:
        raise InvalidFormatError("ID number is required")
    cleaned = _SEPARATORS.sub("", id_number)
    if not _DIGITS.match(cleaned):
        raise InvalidFormatError("ID number must contain exactly 13 digits")
    return cleaned


def luhn_check_digit(digits: str) -> int:
    """
    Luhn-style check digit over the 12 payload digits of an ID number.

    Scans right to left starting undoubled: the rightmost input digit is
    added as-is, the one before it doubled, and so on alternately. Doubled
    values above 9 fold to ``d % 10 + 1``.
    """
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit = digit % 10 + 1
        total += digit
    return (10 - (total % 10)) % 10


def mask(id_number: Optional[str]) -> str:
    """Masked form for log output: keeps the birth-date block only."""
    if not id_number:
        return "<none>"
    cleaned = _SEPARATORS.sub("", id_number)
    if len(cleaned) < 6:
        return "*" * len(cleaned)
    return cleaned[:6] + "*" * (len(cleaned) - 6)


class NationalIdCodec:
    """
    Validator/decoder for South African ID numbers.

    Args:
        century_resolver: Strategy for two-digit years (default rolling window of 25)
        clock: Callable returning today's date (injectable for tests)
    """

    def __init__(
        self,
        century_resolver: Optional[CenturyResolver] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.century_resolver = century_resolver or RollingCenturyResolver()
        self.clock = clock or date.today

    def _birth_date(self, cleaned: str, today: date) -> date:
        yy = int(cleaned[0:2])
        month = int(cleaned[2:4])
        day = int(cleaned[4:6])

        if not 1 <= month <= 12:
            raise InvalidDateError(f"Month {month:02d} is out of range")
        if not 1 <= day <= 31:
            raise InvalidDateError(f"Day {day:02d} is out of range")

        year = self.century_resolver.resolve(yy, today)
        try:
            birth_date = date(year, month, day)
        except ValueError as e:
            raise InvalidDateError(f"{year}-{month:02d}-{day:02d} is not a calendar date") from e

        if birth_date > today:
            raise InvalidDateError("Date of birth lies in the future")
        return birth_date

    def decode(self, id_number: str, check_checksum: bool = True) -> NationalIdDetails:
        """
        Decode an ID number.

        Args:
            id_number: The ID number, optionally with spaces or dashes
            check_checksum: Set to False to read the fields of a number whose
                check digit is wrong (never use this to accept a number)

        Returns:
            NationalIdDetails

        Raises:
            InvalidFormatError: Not 13 digits
            InvalidDateError: Birth date block is not a past calendar date
            InvalidChecksumError: Check digit mismatch
        """
        cleaned = normalize(id_number)
        today = self.clock()
        birth_date = self._birth_date(cleaned, today)

        if check_checksum:
            expected = luhn_check_digit(cleaned[:12])
            if expected != int(cleaned[12]):
                raise InvalidChecksumError("Check digit does not match")

        sequence = int(cleaned[6:10])
        gender = Gender.MALE if sequence >= 5000 else Gender.FEMALE

        citizenship_digit = cleaned[10]
        if citizenship_digit == "0":
            citizenship = Citizenship.CITIZEN
        elif citizenship_digit == "1":
            citizenship = Citizenship.PERMANENT_RESIDENT
        else:
            citizenship = Citizenship.OTHER

        return NationalIdDetails(
            id_number=cleaned,
            date_of_birth=birth_date,
            gender=gender,
            citizenship=citizenship,
        )

    def validate(self, id_number: Optional[str]) -> bool:
        """True when format, date and checksum all hold."""
        try:
            self.decode(id_number)
        except NationalIdError as e:
            logger.debug(f"National ID {mask(id_number)} rejected: {e.kind}")
            return False
        return True

    def format(self, id_number: str) -> str:
        """Render a valid ID number as YYMMDD-GGGG-SCZ."""
        cleaned = self.decode(id_number).id_number
        return f"{cleaned[0:6]}-{cleaned[6:10]}-{cleaned[10:13]}"

    def age(self, id_number: str) -> int:
        """Age in completed years as of the codec's clock."""
        birth_date = self.decode(id_number).date_of_birth
        today = self.clock()
        years = today.year - birth_date.year
        if (today.month, today.day) < (birth_date.month, birth_date.day):
            years -= 1
        return years


# Module-level codec using the rolling window and the real clock
default_codec = NationalIdCodec()

