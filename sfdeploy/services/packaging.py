"""ZIP encoding for Metadata API deploys"""
import base64
import io
import zipfile

from sfdeploy.deployment.models import FileMap


def build_archive(file_map: FileMap) -> str:
    """Zip ``file_map`` in memory and return it base64-encoded.

    Keys ending in ``/`` become directory entries.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as z:
        for path, content in file_map.items():
            if path.endswith("/"):
                z.writestr(zipfile.ZipInfo(path), "")
            else:
                z.writestr(path, content)
    return base64.b64encode(buf.getvalue()).decode("ascii")
