"""Example usage of the async flattening API."""

import asyncio
import logging
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from image_melt import MeltError, melt_image, resolve_layers
from image_melt.tar.archive import untar
from image_melt.utils.fs import scratch_dir

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def show_layers(image: str) -> None:
    """Print the order layers would be applied in."""
    async with scratch_dir("/tmp") as root:
        await untar(image, root)
        layers = await resolve_layers(root)
        for index, layer in enumerate(layers, start=1):
            logger.info(f"{index:>3}. {layer.id}")


async def main(image: str, output: str) -> int:
    """Flatten an image saved with `docker save`."""
    try:
        logger.info("Layer order:")
        await show_layers(image)

        result = await melt_image(image, output, compress=output.endswith(".xz"))
        logger.info(f"✓ Flattened image written to {result}")
        return 0
    except MeltError as e:
        logger.error(f"Flatten failed: {e}")
        return 1


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(f"usage: {sys.argv[0]} <image.tar> <output.tar[.xz]>")
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2])))
