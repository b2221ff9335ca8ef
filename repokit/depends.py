import typing as t
from bevy import auto_inject, get_container


class Depends:
    """Thin facade over the bevy container used for repokit defaults.

    Settings, resolvers and other shared collaborators are looked up here
    when they are not passed explicitly.
    """

    @staticmethod
    def inject(func: t.Callable[..., t.Any]) -> t.Callable[..., t.Any]:
        """Decorator to inject dependencies into a function."""
        return t.cast("t.Callable[..., t.Any]", auto_inject(func))

    @staticmethod
    def set(class_: t.Any, instance: t.Any = None, module: str | None = None) -> t.Any:
        """Register a class/instance in the dependency container.

        Returns the instance that was registered.
        """
        if instance is None:
            instance = class_()
        get_container().add(class_, instance, qualifier=module)
        return instance

    @staticmethod
    def get_sync(category: t.Any, module: str | None = None) -> t.Any:
        """Get a dependency instance, creating it if the container has none."""
        return get_container().get(category, qualifier=module)

    async def get(self, category: t.Any, module: str | None = None) -> t.Any:
        return self.get_sync(category, module)


depends = Depends()
