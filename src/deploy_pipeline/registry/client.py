"""Registry clients that push built images and report their content digest."""

import json
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from deploy_pipeline.registry.models import ImageReference, RegistryCredentials
from deploy_pipeline.utils.errors import ErrorContext, PushError, PushErrorKind
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)

DIGEST_OUTPUT_RE = re.compile(r"digest:\s*(sha256:[a-f0-9]{64})")


class RegistryClient(ABC):
    """Base class for registry clients."""

    @abstractmethod
    def push(self, image: ImageReference, credentials: RegistryCredentials) -> ImageReference:
        """Push ``image`` to its registry.

        Pushing identical content twice is a successful no-op that yields the
        same digest.

        Args:
            image: Target reference; tag must be set
            credentials: Credentials for ``image.registry_host``

        Returns:
            The same reference with its digest populated

        Raises:
            PushError: AUTH_FAILURE, NETWORK_FAILURE or REGISTRY_REJECTED
        """
        pass


class DockerRegistryClient(RegistryClient):
    """Pushes a locally built image with the Docker CLI."""

    # Substrings of docker stderr, matched case-insensitively
    AUTH_MARKERS = (
        'unauthorized',
        'authentication required',
        'no basic auth credentials',
        'access to the resource is denied',
        'incorrect username or password',
        'authorization token has expired',
    )
    NETWORK_MARKERS = (
        'connection refused',
        'connection reset',
        'i/o timeout',
        'no such host',
        'tls handshake timeout',
        'dial tcp',
        'unexpected eof',
        'service unavailable',
        'bad gateway',
        'net/http: request canceled',
    )

    def __init__(
        self,
        source_image: str,
        docker_binary: str = 'docker',
        timeout: float = 900.0,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None
    ):
        """Initialize Docker registry client.

        Args:
            source_image: Local image reference produced by the build, e.g. ``bookmanager:latest``
            docker_binary: Docker CLI executable
            timeout: Per-command timeout in seconds
            runner: Replacement for ``subprocess.run``
        """
        self.source_image = source_image
        self.docker_binary = docker_binary
        self.timeout = timeout
        self.runner = runner or subprocess.run

    def push(self, image: ImageReference, credentials: RegistryCredentials) -> ImageReference:
        if not credentials.is_valid_for(image.registry_host):
            raise PushError(
                f"Credentials were issued for {credentials.registry_host}, not {image.registry_host}",
                kind=PushErrorKind.AUTH_FAILURE,
                context=self._context(image, 'login')
            )

        logger.info(f"Pushing {self.source_image} as {image.tagged_name}")

        self._run(
            [self.docker_binary, 'login', '--username', credentials.username,
             '--password-stdin', image.registry_host],
            image, 'login', stdin=credentials.password
        )
        self._run([self.docker_binary, 'tag', self.source_image, image.tagged_name], image, 'tag')
        result = self._run([self.docker_binary, 'push', image.tagged_name], image, 'push')

        digest = self._parse_digest(result.stdout) or self._inspect_digest(image)
        if not digest:
            raise PushError(
                f"Registry did not report a digest for {image.tagged_name}",
                kind=PushErrorKind.REGISTRY_REJECTED,
                reason="missing digest",
                context=self._context(image, 'push')
            )

        logger.info(f"Pushed {image.tagged_name} ({digest})")
        return image.with_digest(digest)

    def _parse_digest(self, output: Optional[str]) -> Optional[str]:
        """Extract the manifest digest from ``docker push`` output."""
        match = DIGEST_OUTPUT_RE.search(output or '')
        return match.group(1) if match else None

    def _inspect_digest(self, image: ImageReference) -> Optional[str]:
        """Look up the repo digest recorded by the daemon after the push."""
        result = self._run(
            [self.docker_binary, 'image', 'inspect', '--format', '{{json .RepoDigests}}', image.tagged_name],
            image, 'inspect'
        )
        try:
            repo_digests: List[str] = json.loads(result.stdout or '[]') or []
        except json.JSONDecodeError:
            logger.debug(f"Unparseable RepoDigests for {image.tagged_name}: {result.stdout!r}")
            return None

        prefix = f"{image.repository_name}@"
        for entry in repo_digests:
            if entry.startswith(prefix):
                return entry[len(prefix):]
        return None

    def _run(
        self,
        args: List[str],
        image: ImageReference,
        operation: str,
        stdin: Optional[str] = None
    ) -> subprocess.CompletedProcess:
        """Run a docker command and translate failures to PushError."""
        logger.debug(f"Running docker {operation}")
        try:
            result = self.runner(
                args,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except FileNotFoundError as e:
            raise PushError(
                f"Docker CLI not found: {self.docker_binary}",
                kind=PushErrorKind.REGISTRY_REJECTED,
                reason="docker binary missing",
                context=self._context(image, operation),
                cause=e,
                suggestions=['Install Docker or set registry.docker_binary']
            ) from e
        except subprocess.TimeoutExpired as e:
            raise PushError(
                f"docker {operation} timed out after {self.timeout:.0f}s",
                kind=PushErrorKind.NETWORK_FAILURE,
                context=self._context(image, operation),
                cause=e
            ) from e

        if result.returncode != 0:
            raise self._classify_failure(result.stderr or result.stdout or '', image, operation)

        return result

    def _classify_failure(self, output: str, image: ImageReference, operation: str) -> PushError:
        """Map docker error output onto a push error kind."""
        text = output.strip()
        lowered = text.lower()

        if any(marker in lowered for marker in self.AUTH_MARKERS):
            kind = PushErrorKind.AUTH_FAILURE
        elif any(marker in lowered for marker in self.NETWORK_MARKERS):
            kind = PushErrorKind.NETWORK_FAILURE
        else:
            kind = PushErrorKind.REGISTRY_REJECTED

        return PushError(
            f"docker {operation} failed for {image.tagged_name}: {text or 'no output'}",
            kind=kind,
            reason=text or None,
            context=self._context(image, operation)
        )

    def _context(self, image: ImageReference, operation: str) -> ErrorContext:
        return ErrorContext(stage="push", image=image.tagged_name, operation=operation)
