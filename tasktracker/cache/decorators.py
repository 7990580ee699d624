import inspect
from functools import wraps
from typing import Callable


def _to_cacheable(value):
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_to_cacheable(item) for item in value]
    return value


def _argument_binder(fn: Callable) -> Callable[..., dict]:
    """Map a method call onto its parameter names, without ``self``."""
    signature = inspect.signature(fn)

    def bind(self, *args, **kwargs) -> dict:
        bound = signature.bind(self, *args, **kwargs)
        bound.apply_defaults()
        arguments = dict(bound.arguments)
        arguments.pop("self", None)
        return arguments

    return bind


def async_cached(key_builder: Callable[..., str], l2_ttl: int = None):
    """
    Decorator for async service methods. The cache handle is taken from
    ``self.cache``; key_builder receives the method's arguments by name.
    Example:
      @async_cached(lambda owner_id, **kw: f"tasks:{owner_id}", l2_ttl=300)
      async def list_for_owner(self, owner_id): ...
    """

    def decorator(fn: Callable):
        bind = _argument_binder(fn)

        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            key = key_builder(**bind(self, *args, **kwargs))

            # loader closure calls the original function
            async def loader():
                value = await fn(self, *args, **kwargs)
                if value is None:
                    return None
                return _to_cacheable(value)

            return await self.cache.get(key, loader=loader, l2_ttl=l2_ttl)

        return wrapper

    return decorator


def async_cache_invalidate(key_builder: Callable[..., str]):
    """
    Run the wrapped write, then drop the cache entry before returning.

    key_builder receives the method's arguments by name (without self).
    """

    def decorator(fn: Callable):
        bind = _argument_binder(fn)

        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            key = key_builder(**bind(self, *args, **kwargs))
            result = await fn(self, *args, **kwargs)
            await self.cache.delete(key)
            return result

        return wrapper

    return decorator
