"""artipack: offline collection packaging for forensic artifacts.

Resolves the helper tools a set of artifact definitions needs, fetches and
verifies them into a content-addressed cache, and assembles a deterministic
package with a fingerprinted manifest.
"""

__version__ = "0.1.0"
__description__ = (
    "Artifact/tool dependency resolution and offline collection packaging"
)

from artipack.core.pipeline import BuildPipeline
from artipack.cli.app import app as cli

__all__ = ["BuildPipeline", "cli", "__version__"]
