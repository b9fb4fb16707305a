from .registry_client import RegistryClient, RegistryError

__all__ = ["RegistryClient", "RegistryError"]
