from __future__ import annotations

import base64
import io
from types import SimpleNamespace

from fastapi.testclient import TestClient
from PIL import Image, ImageDraw

from cutout.presentation import api


class FakeQueue:
    name = 'cutout'

    def __init__(self) -> None:
        self.calls = []

    def enqueue(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return SimpleNamespace(id='job-123')


def _image_bytes() -> bytes:
    img = Image.new('RGB', (20, 20), 'white')
    ImageDraw.Draw(img).rectangle((5, 5, 14, 14), fill='navy')
    out = io.BytesIO()
    img.save(out, format='PNG')
    return out.getvalue()


def test_health() -> None:
    client = TestClient(api.app)
    res = client.get('/api/health')
    assert res.status_code == 200
    assert res.json()['status'] == 'ok'
    assert res.headers['x-request-id']


def test_remove_bg_returns_transparent_png() -> None:
    client = TestClient(api.app)
    res = client.post(
        '/api/remove-bg',
        files={'file': ('a.png', _image_bytes(), 'image/png')},
        data={'style': 'Flat'},
    )

    assert res.status_code == 200
    assert res.headers['content-type'] == 'image/png'
    assert res.headers['x-icon-style'] == 'Flat'
    with Image.open(io.BytesIO(res.content)) as output:
        assert output.getpixel((0, 0))[3] == 0
        assert output.getpixel((10, 10)) == (0, 0, 128, 255)


def test_remove_bg_rejects_unknown_style() -> None:
    client = TestClient(api.app)
    res = client.post(
        '/api/remove-bg',
        files={'file': ('a.png', _image_bytes(), 'image/png')},
        data={'style': 'Watercolor'},
    )

    assert res.status_code == 400


def test_remove_bg_rejects_out_of_range_options() -> None:
    client = TestClient(api.app)
    res = client.post(
        '/api/remove-bg',
        files={'file': ('a.png', _image_bytes(), 'image/png')},
        data={'style': 'Flat', 'fill_tolerance': '400'},
    )

    assert res.status_code == 400
    assert 'fill_tolerance' in res.json()['detail']


def test_remove_bg_data_uri() -> None:
    client = TestClient(api.app)
    data_uri = 'data:image/png;base64,' + base64.b64encode(_image_bytes()).decode('ascii')

    res = client.post('/api/remove-bg/data-uri', json={'dataUri': data_uri, 'style': 'outlined'})

    assert res.status_code == 200
    body = res.json()
    assert body['style'] == 'Outlined'
    assert body['dataUri'].startswith('data:image/png;base64,')


def test_remove_bg_data_uri_rejects_garbage() -> None:
    client = TestClient(api.app)
    res = client.post('/api/remove-bg/data-uri', json={'dataUri': 'data:image/png;base64,AAAA'})

    assert res.status_code == 400


def test_enqueue_single_job(monkeypatch) -> None:
    fake = FakeQueue()
    monkeypatch.setattr(api, 'queue', fake)

    client = TestClient(api.app)
    res = client.post(
        '/api/jobs/remove-bg',
        files={'file': ('a.png', _image_bytes(), 'image/png')},
        data={'style': 'Hand-drawn'},
    )

    assert res.status_code == 200
    body = res.json()
    assert body['job_id'] == 'job-123'
    args, kwargs = fake.calls[0]
    assert args[0] == 'cutout.tasks.background_jobs.process_single_image_job'
    assert args[3] == 'Hand-drawn'
    assert args[4] == {'outline_tolerance': 40, 'fill_tolerance': 20, 'edge_alpha_floor': 0.05}
    assert kwargs['result_ttl'] == api.settings.job_result_ttl_seconds


def test_enqueue_rejects_non_image(monkeypatch) -> None:
    fake = FakeQueue()
    monkeypatch.setattr(api, 'queue', fake)

    client = TestClient(api.app)
    res = client.post(
        '/api/jobs/remove-bg',
        files={'file': ('a.txt', b'hello', 'text/plain')},
    )

    assert res.status_code == 400
    assert not fake.calls


def test_enqueue_batch_rejects_too_many_files(monkeypatch) -> None:
    fake = FakeQueue()
    monkeypatch.setattr(api, 'queue', fake)
    monkeypatch.setattr(api.settings, 'max_batch_files', 1)

    client = TestClient(api.app)
    res = client.post(
        '/api/jobs/remove-bg-batch',
        files=[
            ('files', ('a.png', _image_bytes(), 'image/png')),
            ('files', ('b.png', _image_bytes(), 'image/png')),
        ],
    )

    assert res.status_code == 400
    assert not fake.calls


def test_metrics_endpoint() -> None:
    client = TestClient(api.app)
    res = client.get('/api/metrics')
    assert res.status_code == 200
    assert 'timestamp' in res.json()


def test_prometheus_metrics() -> None:
    client = TestClient(api.app)
    res = client.get('/api/metrics/prometheus')
    assert res.status_code == 200
    assert 'cutout_http_requests_total' in res.text


def test_cancel_job(monkeypatch) -> None:
    class DummyJob:
        id = 'job-x'

        def __init__(self) -> None:
            self._status = 'queued'

        def get_status(self, refresh=True):  # noqa: ARG002
            return self._status

        def cancel(self):
            self._status = 'canceled'

    monkeypatch.setattr(api.Job, 'fetch', lambda *args, **kwargs: DummyJob())  # noqa: ARG005
    client = TestClient(api.app)
    res = client.post('/api/jobs/job-x/cancel')
    assert res.status_code == 200
    assert res.json()['status'] == 'canceled'


def test_retry_failed_job(monkeypatch) -> None:
    class DummyJob:
        id = 'job-f'
        func_name = 'cutout.tasks.background_jobs.process_single_image_job'
        args = (b'abc', 'a.png', 'Flat', None)
        kwargs = {}

        def get_status(self, refresh=True):  # noqa: ARG002
            return 'failed'

    class DummyQueue:
        def enqueue_call(self, **kwargs):
            return SimpleNamespace(id='job-new')

    monkeypatch.setattr(api.Job, 'fetch', lambda *args, **kwargs: DummyJob())  # noqa: ARG005
    monkeypatch.setattr(api, 'queue', DummyQueue())
    client = TestClient(api.app)
    res = client.post('/api/jobs/job-f/retry')
    assert res.status_code == 200
    assert res.json()['job_id'] == 'job-new'


def test_download_finished_job(monkeypatch) -> None:
    class DummyJob:
        id = 'job-d'
        result = {'filename': 'icon.png', 'content_type': 'image/png', 'data': b'png-bytes'}

        def get_status(self, refresh=True):  # noqa: ARG002
            return 'finished'

    monkeypatch.setattr(api.Job, 'fetch', lambda *args, **kwargs: DummyJob())  # noqa: ARG005
    client = TestClient(api.app)
    res = client.get('/api/jobs/job-d/download')
    assert res.status_code == 200
    assert res.content == b'png-bytes'
    assert 'icon.png' in res.headers['content-disposition']


def test_download_unfinished_job(monkeypatch) -> None:
    class DummyJob:
        id = 'job-q'

        def get_status(self, refresh=True):  # noqa: ARG002
            return 'queued'

    monkeypatch.setattr(api.Job, 'fetch', lambda *args, **kwargs: DummyJob())  # noqa: ARG005
    client = TestClient(api.app)
    res = client.get('/api/jobs/job-q/download')
    assert res.status_code == 409


def test_rate_limit(monkeypatch) -> None:
    monkeypatch.setattr(api.settings, 'rate_limit_per_minute', 0)
    client = TestClient(api.app)
    res = client.get('/api/health')
    assert res.status_code == 429


def test_remove_bg_data_uri_enforces_pixel_limit(monkeypatch) -> None:
    monkeypatch.setattr(api.settings, 'max_image_pixels', 100)
    client = TestClient(api.app)
    data_uri = 'data:image/png;base64,' + base64.b64encode(_image_bytes()).decode('ascii')

    res = client.post('/api/remove-bg/data-uri', json={'dataUri': data_uri, 'style': 'Flat'})

    assert res.status_code == 400
    assert 'too large' in res.json()['detail']


def test_remove_bg_data_uri_accepts_options() -> None:
    client = TestClient(api.app)
    data_uri = 'data:image/png;base64,' + base64.b64encode(_image_bytes()).decode('ascii')

    res = client.post(
        '/api/remove-bg/data-uri',
        json={'dataUri': data_uri, 'style': 'Outlined', 'outlineTolerance': 0},
    )
    assert res.status_code == 200
    png = base64.b64decode(res.json()['dataUri'].split(',', 1)[1])
    # with zero tolerance nothing counts as near-white, so the canvas stays opaque
    with Image.open(io.BytesIO(png)) as output:
        assert output.getpixel((0, 0))[3] == 255

    res = client.post(
        '/api/remove-bg/data-uri',
        json={'dataUri': data_uri, 'fillTolerance': 999},
    )
    assert res.status_code == 400
