import io
import zipfile
from pathlib import Path

import pytest
import requests
from PIL import Image

from kmzoverlay.config import AppConfig


SAMPLE_KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <name>Sample site</name>
    <Style id="red">
      <IconStyle>
        <color>ffb0279c</color>
        <scale>1.5</scale>
        <Icon><href>files/red.png</href></Icon>
      </IconStyle>
    </Style>
    <Style id="plain">
      <IconStyle>
        <Icon><href>files/plain.png</href></Icon>
      </IconStyle>
    </Style>
    <StyleMap id="redMap">
      <Pair><key>normal</key><styleUrl>#red</styleUrl></Pair>
      <Pair><key>highlight</key><styleUrl>#plain</styleUrl></Pair>
    </StyleMap>
    <GroundOverlay>
      <name>Site plan</name>
      <Icon><href>files/overlay.png</href></Icon>
      <LatLonBox>
        <north>25.05</north>
        <south>25.00</south>
        <east>121.55</east>
        <west>121.50</west>
        <rotation>{rotation}</rotation>
      </LatLonBox>
    </GroundOverlay>
    <Folder>
      <Placemark>
        <name>Gate</name>
        <styleUrl>#redMap</styleUrl>
        <Point><coordinates>121.52,25.02,0</coordinates></Point>
      </Placemark>
      <Placemark>
        <name>Tower</name>
        <styleUrl>#plain</styleUrl>
        <Point><coordinates>121.53,25.03</coordinates></Point>
      </Placemark>
      <Placemark>
        <name>Stray</name>
        <styleUrl>#missing</styleUrl>
        <Point><coordinates>121.54,25.04</coordinates></Point>
      </Placemark>
      <Placemark>
        <name>Fence</name>
        <LineString><coordinates>121.50,25.00 121.55,25.05</coordinates></LineString>
      </Placemark>
    </Folder>
  </Document>
</kml>
"""

MARKERS_ONLY_KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <Placemark><name>West</name><Point><coordinates>10.0,50.0</coordinates></Point></Placemark>
    <Placemark><name>East</name><Point><coordinates>10.2,50.1</coordinates></Point></Placemark>
  </Document>
</kml>
"""

EMPTY_KML = """<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2"><Document><name>Nothing</name></Document></kml>
"""


def png_bytes(size=(32, 32), color=(200, 30, 30, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def build_kmz(path: Path, kml_text: str, files: dict[str, bytes] | None = None, kml_name: str = "doc.kml") -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr(kml_name, kml_text)
        for name, payload in (files or {}).items():
            zf.writestr(name, payload)
    return path


def sample_files() -> dict[str, bytes]:
    return {
        "files/overlay.png": png_bytes((64, 48), (20, 120, 200, 180)),
        "files/red.png": png_bytes((16, 16), (220, 20, 20, 255)),
        "files/plain.png": png_bytes((16, 16), (20, 20, 220, 255)),
    }


@pytest.fixture()
def sample_kmz(tmp_path: Path) -> Path:
    return build_kmz(tmp_path / "sample.kmz", SAMPLE_KML.format(rotation=0), sample_files())


@pytest.fixture()
def rotated_kmz(tmp_path: Path) -> Path:
    return build_kmz(tmp_path / "rotated.kmz", SAMPLE_KML.format(rotation=30), sample_files())


@pytest.fixture()
def markers_kmz(tmp_path: Path) -> Path:
    return build_kmz(tmp_path / "markers.kmz", MARKERS_ONLY_KML)


@pytest.fixture()
def keyed_config() -> AppConfig:
    return AppConfig.from_mapping(
        {"static_map": {"api_key": "test-key"}, "http": {"max_retries": 0}},
        None,
    )


class FakeResponse:
    def __init__(self, status_code=200, content=b"", headers=None, url=""):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.url = url

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error for {self.url}")

    def close(self):
        pass


class FakeSession:
    """Stands in for `requests.Session`, replaying queued responses."""

    def __init__(self, responses=None, default=None):
        self.headers = {}
        self.calls = []
        self._responses = list(responses or [])
        self._default = default
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if self._responses:
            response = self._responses.pop(0)
        elif self._default is not None:
            response = self._default
        else:
            response = FakeResponse(404, b"", url=url)
        response.url = url
        return response

    def close(self):
        self.closed = True
