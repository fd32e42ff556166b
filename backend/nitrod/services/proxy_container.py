from __future__ import annotations

import logging

import docker
from docker.errors import DockerException, NotFound
from docker.types import Mount

from nitrod.config import Settings
from nitrod.exceptions import ProxyContainerError, ProxyNotFoundError
from nitrod.schemas.proxy import ProxyContainer, ProxyPorts, ProxyState
from nitrod.validators import validate_container_name


logger = logging.getLogger(__name__)

LABEL_NITRO = "com.craftcms.nitro"
LABEL_TYPE = "com.craftcms.nitro.type"
LABEL_PROXY = "com.craftcms.nitro.proxy"
LABEL_PROXY_VERSION = "com.craftcms.nitro.proxy-version"
LABEL_NETWORK = "com.craftcms.nitro.network"
LABEL_VOLUME = "com.craftcms.nitro.volume"

# Ports the proxy image listens on inside the container
CONTAINER_PORTS = ProxyPorts()


class ProxyLifecycleManager:
    """Keeps exactly one proxy container present, attached and running."""

    def __init__(self, client: docker.DockerClient, settings: Settings):
        self.client = client
        self.settings = settings

    @property
    def host_ports(self) -> ProxyPorts:
        return ProxyPorts(
            http=int(self.settings.nitro_http_port),
            https=int(self.settings.nitro_https_port),
            api=int(self.settings.nitro_api_port),
        )

    # Environment resources -------------------------------------------

    def ensure_network(self, name: str):
        try:
            existing = self.client.networks.list(names=[name])
            for network in existing:
                if network.name == name:
                    return network
            logger.info("Creating network %s", name)
            return self.client.networks.create(
                name,
                driver="bridge",
                attachable=True,
                labels={LABEL_NETWORK: name},
            )
        except DockerException as exc:
            raise ProxyContainerError(f"unable to create the network {name}: {exc}") from exc

    def ensure_volume(self, name: str):
        try:
            return self.client.volumes.get(name)
        except NotFound:
            pass
        except DockerException as exc:
            raise ProxyContainerError(f"unable to inspect the volume {name}: {exc}") from exc

        logger.info("Creating volume %s", name)
        try:
            return self.client.volumes.create(name=name, driver="local", labels={LABEL_VOLUME: name})
        except DockerException as exc:
            raise ProxyContainerError(f"unable to create the volume {name}: {exc}") from exc

    def initialize(self, name: str | None = None) -> ProxyContainer:
        """Create the network, volume and proxy for an environment, in that order."""
        name = validate_container_name(name or self.settings.environment_name)
        network = self.ensure_network(self.settings.proxy_network)
        volume = self.ensure_volume(name)
        return self.ensure(volume.name, network.id)

    # Proxy container -------------------------------------------------

    def ensure(self, volume: str, network_id: str | None = None) -> ProxyContainer:
        """Create the proxy container if needed and make sure it is running."""
        if not self.settings.nitro_development:
            self._ensure_image()

        container = self._find(
            {"label": [f"{LABEL_NITRO}=true", f"{LABEL_PROXY}=true"]}
        )
        if container is None:
            container = self._create(volume, network_id)
        else:
            logger.info("Proxy container %s already exists", container.name)

        self._start(container)
        return self._describe(container, volume, network_id)

    def find_and_start(self) -> ProxyContainer:
        container = self._find({"label": f"{LABEL_TYPE}=proxy"})
        if container is None:
            raise ProxyNotFoundError()
        self._start(container)
        return self._describe(container)

    # Internal helpers ------------------------------------------------

    def _ensure_image(self) -> None:
        image = self.settings.proxy_image_ref
        try:
            images = self.client.images.list(
                filters={"label": f"{LABEL_NITRO}=true", "reference": image}
            )
        except DockerException as exc:
            raise ProxyContainerError(f"unable to get a list of images: {exc}") from exc

        if images:
            return

        logger.info("Pulling image %s", image)
        repository, _, tag = image.rpartition(":")
        try:
            self.client.images.pull(repository, tag=tag)
        except DockerException as exc:
            raise ProxyContainerError(f"unable to pull {image}: {exc}") from exc

    def _find(self, filters: dict):
        try:
            containers = self.client.containers.list(all=True, filters=filters)
        except DockerException as exc:
            raise ProxyContainerError(f"unable to list the containers: {exc}") from exc

        names = {self.settings.proxy_name, f"/{self.settings.proxy_name}"}
        for container in containers:
            if container.name in names or container.attrs.get("Name") in names:
                return container
        return None

    def _create(self, volume: str, network_id: str | None):
        ports = self.host_ports
        image = self.settings.proxy_image_ref
        logger.info("Creating proxy container %s from %s", self.settings.proxy_name, image)
        try:
            container = self.client.containers.create(
                image,
                name=self.settings.proxy_name,
                labels={
                    LABEL_NITRO: "true",
                    LABEL_TYPE: "proxy",
                    LABEL_PROXY: "true",
                    LABEL_PROXY_VERSION: self.settings.version,
                },
                ports={
                    f"{CONTAINER_PORTS.http}/tcp": ("127.0.0.1", ports.http),
                    f"{CONTAINER_PORTS.https}/tcp": ("127.0.0.1", ports.https),
                    f"{CONTAINER_PORTS.api}/tcp": ("127.0.0.1", ports.api),
                },
                mounts=[Mount(target=self.settings.proxy_data_path, source=volume, type="volume")],
                network=network_id or self.settings.proxy_network,
            )
        except DockerException as exc:
            raise ProxyContainerError(f"unable to create the container from image {image}: {exc}") from exc
        return container

    def _start(self, container) -> None:
        if container.status == "running":
            return
        logger.info("Starting proxy container %s (status %s)", container.name, container.status)
        try:
            container.start()
            container.reload()
        except DockerException as exc:
            raise ProxyContainerError(f"unable to start the proxy container: {exc}") from exc

    def _describe(self, container, volume: str | None = None, network_id: str | None = None) -> ProxyContainer:
        state = ProxyState.RUNNING if container.status == "running" else ProxyState.CREATED
        return ProxyContainer(
            id=container.id,
            name=container.name,
            state=state,
            ports=self.host_ports,
            volume_name=volume,
            network_id=network_id,
        )
