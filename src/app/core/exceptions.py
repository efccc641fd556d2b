from __future__ import annotations


class PipelineError(Exception):
    """Базовая ошибка домена инкрементальных пайплайнов.

    detail: необязательное пояснение для пользователя (уходит в HTTP-ответ).
    """

    def __init__(self, message: str = "", *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidArgumentError(PipelineError):
    """Не передан обязательный аргумент или аргументы противоречат друг другу."""


class PipelineNotFoundError(PipelineError):
    """Пайплайн с указанным именем не найден."""


class PipelineAlreadyExistsError(PipelineError):
    """Пайплайн с таким именем уже существует."""


class PipelinePermissionError(PipelineError):
    """Вызывающий не владелец пайплайна и не суперпользователь."""


class UnsupportedSourceError(PipelineError):
    """Источник нельзя использовать для пайплайна этого типа."""


class UnresolvedEnumeratorError(PipelineError):
    """Функция листинга файлов не найдена."""


class InvalidCommandError(PipelineError):
    """Команда не парсится или типы параметров не совпадают."""


class ExecutionFailureError(PipelineError):
    """Команда пайплайна упала на конкретном юните дельты."""

    def __init__(self, pipeline_name: str, unit: str, message: str) -> None:
        super().__init__(f"pipeline {pipeline_name}: {unit} failed: {message}")
        self.pipeline_name = pipeline_name
        self.unit = unit
