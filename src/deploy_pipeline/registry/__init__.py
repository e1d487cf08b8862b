"""Image registry access: references, credentials and push clients."""

from .models import ImageReference, RegistryCredentials
from .credentials import CredentialsProvider, EcrCredentialsProvider, EnvironmentCredentialsProvider
from .client import RegistryClient, DockerRegistryClient

__all__ = [
    "ImageReference",
    "RegistryCredentials",
    "CredentialsProvider",
    "EcrCredentialsProvider",
    "EnvironmentCredentialsProvider",
    "RegistryClient",
    "DockerRegistryClient",
]
