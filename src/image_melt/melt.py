"""Async functional style flattening operations."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from .core.merge import merge_layers
from .core.types import MeltConfig, default_tmp_prefix
from .exceptions import MeltError
from .tar.archive import untar
from .tar.manifest import resolve_layers
from .utils.fs import scratch_dir

logger = logging.getLogger(__name__)

PHASE_UNTAR = "untar"
PHASE_LAYERS = "layers"
PHASE_MERGE = "merge"


@contextmanager
def _phase(name: str) -> Iterator[None]:
    try:
        yield
    except MeltError as e:
        if e.phase is None:
            e.phase = name
        raise


async def melt_config(config: MeltConfig) -> Path:
    """Flatten the image described by a MeltConfig.

    Errors raised by a step carry its name in ``phase`` (PHASE_UNTAR,
    PHASE_LAYERS or PHASE_MERGE). Scratch setup errors carry none.

    Args:
        config: Run settings

    Returns:
        Path of the written archive
    """
    async with scratch_dir(config.tmp_prefix, "melt_") as image_root:
        logger.info("Extracting %s", config.image)
        with _phase(PHASE_UNTAR):
            await untar(config.image, image_root)

        with _phase(PHASE_LAYERS):
            layers = await resolve_layers(image_root, config.layer_format)
        logger.info("Layer order: %s", " -> ".join(layers.ids))

        with _phase(PHASE_MERGE):
            return await merge_layers(
                layers,
                config.output,
                scratch_prefix=config.tmp_prefix,
                compress=config.compress,
                purge_whiteouts=config.purge_whiteouts,
            )


async def melt_image(
    image: Union[str, Path],
    output: Union[str, Path],
    tmp_prefix: Union[str, Path, None] = None,
    compress: bool = False,
    purge_whiteouts: bool = False,
    layer_format: str = "auto",
) -> Path:
    """멀티 레이어 이미지 tar 파일을 단일 레이어 tar 파일로 병합합니다.

    레이어는 메타데이터에 정의된 순서대로 적용되며, whiteout(.wh.*) 파일이
    가리키는 경로는 하위 레이어에서 삭제됩니다. 작업 중 생성된 임시
    디렉토리는 성공/실패와 관계없이 모두 삭제됩니다.

    Args:
        image: `docker save`로 생성된 이미지 tar 파일 경로
            - 상대경로: "nginx.tar", "./images/app.tar"
            - 절대경로: "/home/user/images/nginx.tar"
        output: 병합된 tar 파일을 저장할 경로 (예: "nginx-flat.tar")
        tmp_prefix: 임시 디렉토리를 만들 위치 (기본값: $MELT_TMPDIR 또는 "/tmp")
        compress: True이면 xz로 압축 (기본값: False)
        purge_whiteouts: True이면 최종 트리에 남은 whiteout 파일도 삭제 (레거시 옵션)
        layer_format: "auto", "flat"(manifest.json) 또는 "graph"(레이어별 json)

    Returns:
        Path: 생성된 tar 파일 경로

    Raises:
        InvalidArgumentsError: 입력/출력 경로가 없거나 입력 파일이 존재하지 않는 경우
        TempCreateError: 임시 디렉토리를 만들 수 없는 경우
        MetadataNotFoundError: 레이어 메타데이터를 찾을 수 없는 경우
        MetadataCorruptError: 메타데이터 형식이 잘못된 경우
        LayerUnpackError: 레이어 압축 해제 실패 시
        LayerFoldError: 레이어 병합 실패 시
        LayerPackError: 결과 tar 파일 생성 실패 시

    Examples:
        # 기본 사용
        await melt_image("nginx.tar", "nginx-flat.tar")

        # xz 압축 + 임시 디렉토리 지정
        await melt_image("nginx.tar", "nginx-flat.tar.xz", tmp_prefix="/var/tmp", compress=True)

        # 레거시 이미지 (레이어별 json 파일)
        await melt_image("old.tar", "old-flat.tar", layer_format="graph", purge_whiteouts=True)
    """
    config = MeltConfig(
        image=image,
        output=output,
        tmp_prefix=tmp_prefix if tmp_prefix is not None else default_tmp_prefix(),
        compress=compress,
        purge_whiteouts=purge_whiteouts,
        layer_format=layer_format,
    )
    return await melt_config(config)
