from typing import Type

from docscan.ocr.base import BaseRecognitionEngine


class RecognitionEngineRegistry:
    """
    Registry for recognition engine implementations.

    Engines are registered by name and instantiated on demand with their
    engine-specific options.
    """

    _engines: dict[str, Type[BaseRecognitionEngine]] = {}

    @classmethod
    def register(cls, engine_class: Type[BaseRecognitionEngine]) -> Type[BaseRecognitionEngine]:
        """
        Register an engine class.

        Can be used as a decorator:
            @RecognitionEngineRegistry.register
            class MyEngine(BaseRecognitionEngine):
                ...

        Args:
            engine_class: The engine class to register.

        Returns:
            The same engine class (for decorator usage).
        """
        # The name property does not depend on instance state
        temp_instance = object.__new__(engine_class)
        cls._engines[temp_instance.name] = engine_class
        return engine_class

    @classmethod
    def get_engine_class(cls, name: str) -> Type[BaseRecognitionEngine] | None:
        return cls._engines.get(name)

    @classmethod
    def create_engine(cls, name: str, **options) -> BaseRecognitionEngine | None:
        """
        Create an instance of an engine.

        Args:
            name: The engine identifier.
            **options: Passed through to the engine constructor.

        Returns:
            An engine instance, or None if the engine type is not registered.
        """
        engine_class = cls.get_engine_class(name)
        if engine_class is None:
            return None
        return engine_class(**options)

    @classmethod
    def list_registered(cls) -> list[str]:
        return list(cls._engines.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        """Check if an engine is registered."""
        return name in cls._engines
