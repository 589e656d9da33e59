from .settings import PipelineConfig, create_example_env_file, load_config, setup_logging

__all__ = ["PipelineConfig", "create_example_env_file", "load_config", "setup_logging"]
