import io

from PIL import Image

from dashboard import create_app
from kernel import render_rows
from protocol import FrameRequest
from server import ChunkController
from session import FrameWriter


def _client(thread_cluster, render=False):
    cluster = thread_cluster(2)
    controller = ChunkController(cluster.channel, chunk_size=4)
    writer = FrameWriter(io.BytesIO())
    if render:
        request = FrameRequest(1.0, -0.5, 0.0, 16, 10, 30)
        controller.broadcast(request)
        writer.write_frame(request, controller.run_round(request))
    controller.broadcast(FrameRequest.terminal())
    cluster.join()
    return create_app(controller, writer).test_client()


def test_stats_before_first_frame(thread_cluster):
    response = _client(thread_cluster).get('/stats')
    assert response.status_code == 200
    data = response.get_json()
    assert data['frames_rendered'] == 0
    assert data['current_frame'] is None
    assert set(data['workers']) == {'worker_1', 'worker_2'}


def test_frame_preview_missing_until_rendered(thread_cluster):
    assert _client(thread_cluster).get('/frame.png').status_code == 404


def test_stats_and_preview_after_frame(thread_cluster):
    client = _client(thread_cluster, render=True)

    data = client.get('/stats').get_json()
    assert data['progress'] == 100.0
    assert data['frames_written'] == 1
    assert data['current_frame']['width'] == 16
    assert sum(w['tasks_done'] for w in data['workers'].values()) == 3
    assert all(w['status'] == 'finished' for w in data['workers'].values())

    response = client.get('/frame.png')
    assert response.mimetype == 'image/png'
    img = Image.open(io.BytesIO(response.data))
    assert img.size == (16, 10)
    expected = render_rows(FrameRequest(1.0, -0.5, 0.0, 16, 10, 30), 0, 10)
    assert img.convert('RGB').tobytes() == expected
