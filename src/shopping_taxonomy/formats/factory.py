from typing import Dict, Type, Union

from shopping_taxonomy.domain.enums import ExportFormat
from shopping_taxonomy.formats.base import CategoryFormat
from shopping_taxonomy.formats.csv_format import CsvFormat
from shopping_taxonomy.formats.json_format import JsonFormat


class FormatFactory:
    """
    Factory for export/import formats.

    Uses a registry to map format identifiers to CategoryFormat classes.
    JSON and CSV are registered on import of this module.
    """

    _registry: Dict[ExportFormat, Type[CategoryFormat]] = {}

    @classmethod
    def register(cls, export_format: ExportFormat, format_class: Type[CategoryFormat]) -> None:
        """
        Register the implementation of a format

        Raises:
            ValueError: If the format is already registered
            TypeError: If format_class doesn't inherit from CategoryFormat

        Example:
            FormatFactory.register(ExportFormat.JSON, JsonFormat)
        """
        if export_format in cls._registry:
            raise ValueError(f"Format '{export_format.value}' is already registered")

        if not issubclass(format_class, CategoryFormat):
            raise TypeError(f"{format_class} must inherit from CategoryFormat")

        cls._registry[export_format] = format_class

    @classmethod
    def create(cls, export_format: Union[ExportFormat, str]) -> CategoryFormat:
        """
        Create a format instance.

        Args:
            export_format: ExportFormat member or its value ('json', 'csv')

        Raises:
            ValueError: If the format is unknown or not registered
        """
        export_format = ExportFormat(export_format)
        if export_format not in cls._registry:
            available = ", ".join(f.value for f in cls._registry)
            raise ValueError(
                f"No format registered for '{export_format.value}'. "
                f"Available formats: {available}"
            )
        return cls._registry[export_format]()

    @classmethod
    def get_available_formats(cls) -> list[str]:
        return [export_format.value for export_format in cls._registry]


FormatFactory.register(ExportFormat.JSON, JsonFormat)
FormatFactory.register(ExportFormat.CSV, CsvFormat)
