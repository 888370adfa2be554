from __future__ import annotations

import os

_TRUTHY = ("1", "true", "t")


class __Config:
    def __init__(self) -> None:
        self.__runtime_checks: bool | None = None

    @property
    def runtime_checks(self) -> bool:
        """
        Whether public entry points should be wrapped with runtime type checks.
        Can be enabled by setting the environment variable ``SHARDKV_RUNTIME_CHECKS``
        to ``true`` before :mod:`shardkv` is imported, or by assigning
        ``shardkv.Config.runtime_checks = True``.
        """
        if self.__runtime_checks is not None:
            return self.__runtime_checks
        return os.environ.get("SHARDKV_RUNTIME_CHECKS", "").lower() in _TRUTHY

    @runtime_checks.setter
    def runtime_checks(self, value: bool) -> None:
        self.__runtime_checks = value


#: Used to configure global behaviors of the shardkv library
Config = __Config()
