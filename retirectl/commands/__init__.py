from . import retire

__all__ = ['retire']
