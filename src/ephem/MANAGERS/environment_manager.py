"""
Resolution of container environment variables from .env files and explicit
definitions.
"""
import os
from typing import Dict, List

from dotenv import dotenv_values

from ..MODELS.container_spec import ContainerSpec


class EnvironmentManager:
    """
    Merges environment variables declared in a spec with its env files.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        """
        self.base_dir = base_dir

    def get_merged_environment(self,
                               explicit_env: Dict[str, str],
                               env_files: List[str]) -> Dict[str, str]:
        """
        Merges variables from the given .env files and explicit definitions.
        Unlike a host process, a container does not inherit the caller's
        environment.

        :param explicit_env: Explicitly defined environment variables.
        :param env_files: Paths to .env files; later files override earlier ones.
        :return: The merged environment.
        :raises FileNotFoundError: If an env file does not exist.
        """
        merged_env: Dict[str, str] = {}

        for env_file in env_files:
            file_path = os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path):
                raise FileNotFoundError(f"Environment file not found: {file_path}")
            for key, value in dotenv_values(file_path).items():
                merged_env[key] = value if value is not None else ""

        # Explicit environment variables override everything
        merged_env.update(explicit_env)

        return merged_env

    def resolve(self, spec: ContainerSpec) -> ContainerSpec:
        """
        Returns a spec whose environment already contains its env files.

        :param spec: The declared spec.
        :return: The spec to hand to the runtime.
        """
        if not spec.environment_files:
            return spec
        environment = self.get_merged_environment(spec.environment, spec.environment_files)
        data = spec.model_dump()
        data.update(environment=environment, environment_files=[])
        return ContainerSpec(**data)
