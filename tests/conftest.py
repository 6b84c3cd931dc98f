from pathlib import Path

import pytest

from assetflow.config import BuildConfig
from assetflow.transform import TransformContext


@pytest.fixture
def config(tmp_path: Path) -> BuildConfig:
    (tmp_path / "src").mkdir()
    return BuildConfig(project_root=tmp_path, src="src", prod="dist")


@pytest.fixture
def context(config: BuildConfig) -> TransformContext:
    return TransformContext.for_config(config)
