"""HoloHost - per-tenant bridge instance orchestration."""

__version__ = "0.1.0"
