from .docker_builder import DockerImageBuilder, SourceFetchError, ImageBuildError

__all__ = ["DockerImageBuilder", "SourceFetchError", "ImageBuildError"]
