"""
Нормализация и валидация телефонных номеров.

Приводит номер, введённый пользователем в произвольном виде, к
каноническому международному формату ``+<код страны><индикатор мобильного><абонент>``.
По умолчанию используется план нумерации Аргентины (+54, мобильный индикатор 9,
10 цифр внутреннего номера), но алгоритм параметризован планом.
"""
import re
from dataclasses import dataclass


@dataclass(frozen=True)
class NumberingPlan:
    """Параметры национального плана нумерации."""
    country_code: str = "54"
    mobile_indicator: str = "9"
    subscriber_length: int = 10
    trunk_prefix: str = "0"
    min_tail: int = 8
    max_tail: int = 12

    @property
    def canonical_pattern(self) -> re.Pattern:
        return re.compile(
            rf"^\+{self.country_code}{self.mobile_indicator}\d{{{self.min_tail},{self.max_tail}}}$"
        )


ARGENTINA = NumberingPlan()

_NON_DIGITS = re.compile(r"[^\d+]")


def _clean(raw: str) -> str:
    """Оставляет только цифры и ведущий '+'."""
    cleaned = _NON_DIGITS.sub("", raw or "")
    if cleaned.startswith("+"):
        return "+" + cleaned[1:].replace("+", "")
    return cleaned.replace("+", "")


def _with_indicator(national: str, plan: NumberingPlan) -> str:
    """Добавляет мобильный индикатор к внутреннему номеру без него."""
    if len(national) == plan.subscriber_length and not national.startswith(plan.mobile_indicator):
        return plan.mobile_indicator + national
    return national


def normalize_phone(raw: str, plan: NumberingPlan = ARGENTINA) -> str:
    """
    Возвращает номер в каноническом формате.

    Функция тотальная: для пустого или мусорного ввода возвращается
    best-effort строка, которую is_valid_phone отклонит.
    Идемпотентна: normalize_phone(normalize_phone(x)) == normalize_phone(x).
    """
    cleaned = _clean(raw)

    if cleaned.startswith("+"):
        digits = cleaned[1:]
        if digits.startswith(plan.country_code):
            national = digits[len(plan.country_code):]
            return "+" + plan.country_code + _with_indicator(national, plan)
        return cleaned

    if cleaned.startswith(plan.country_code):
        national = cleaned[len(plan.country_code):]
        return "+" + plan.country_code + _with_indicator(national, plan)

    national = cleaned
    if plan.trunk_prefix and national.startswith(plan.trunk_prefix):
        national = national[len(plan.trunk_prefix):]
    return "+" + plan.country_code + _with_indicator(national, plan)


def is_valid_phone(raw: str, plan: NumberingPlan = ARGENTINA) -> bool:
    """Проверяет, что номер после нормализации соответствует каноническому формату."""
    if not raw or not _clean(raw).lstrip("+"):
        return False
    return bool(plan.canonical_pattern.match(normalize_phone(raw, plan)))


def format_phone_display(raw: str, plan: NumberingPlan = ARGENTINA) -> str:
    """Формат для отображения: +54 9 11 2345-6789."""
    formatted = normalize_phone(raw, plan)
    prefix = "+" + plan.country_code + plan.mobile_indicator
    if formatted.startswith(prefix):
        rest = formatted[len(prefix):]
        area_code, number = rest[:2], rest[2:]
        if len(number) >= 7:
            return f"+{plan.country_code} {plan.mobile_indicator} {area_code} {number[:4]}-{number[4:]}"
    return formatted
