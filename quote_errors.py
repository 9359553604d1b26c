# -*- coding: utf-8 -*-
"""Исключения ядра. Наследуются от ValueError, чтобы старые `except ValueError` продолжали работать."""


class QuoteError(ValueError):
    """Базовая ошибка расчёта (декодер/геометрия/цена)."""


class FormatError(QuoteError):
    """Буфер не является корректным бинарным STL (длина не сходится с заголовком)."""


class InvalidParameterError(QuoteError):
    """Параметр конфигурации или геометрии нарушает инвариант (объём, плотность упаковки, reuse rate и т.д.)."""
