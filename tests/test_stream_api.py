import uuid

from app.models.content import Video


def test_stream_partial_content_large_file(client, make_video):
    video = make_video(size=1_430_145)

    response = client.get(f"/stream/{video.id}", headers={"Range": "bytes=20-1430144"})

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 20-1430144/1430145"
    assert response.headers["content-length"] == "1430125"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.headers["content-type"] == "video/mp4"
    assert len(response.content) == 1_430_125


def test_stream_full_file_without_range(client, make_video):
    video = make_video(size=2048)

    response = client.get(f"/stream/{video.id}")

    assert response.status_code == 200
    assert response.headers["content-length"] == "2048"
    assert response.headers["content-type"] == "video/mp4"
    assert response.headers["accept-ranges"] == "bytes"
    assert len(response.content) == 2048


def test_stream_range_body_matches_file(client, db_session, storage_dir):
    payload = bytes(range(256)) * 8
    (storage_dir / "body.mp4").write_bytes(payload)
    video = Video(title="Body", url="body.mp4", size_bytes=len(payload))
    db_session.add(video)
    db_session.commit()

    response = client.get(f"/stream/{video.id}", headers={"Range": "bytes=1000-1099"})

    assert response.status_code == 206
    assert response.content == payload[1000:1100]


def test_stream_open_ended_range(client, make_video):
    video = make_video(size=1000)

    response = client.get(f"/stream/{video.id}", headers={"Range": "bytes=900-"})

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 900-999/1000"
    assert response.headers["content-length"] == "100"


def test_stream_unknown_video_returns_404(client, storage_dir):
    video_id = uuid.uuid4()

    plain = client.get(f"/stream/{video_id}")
    ranged = client.get(f"/stream/{video_id}", headers={"Range": "bytes=0-10"})

    assert plain.status_code == 404
    assert ranged.status_code == 404
    body = plain.json()
    assert body["statusCode"] == 404
    assert body["error"] == "Not Found"
    assert body["message"] == f"Video with id {video_id} not found"


def test_stream_unsatisfiable_range_returns_416(client, make_video):
    video = make_video(size=1000)

    response = client.get(f"/stream/{video.id}", headers={"Range": "bytes=5000-6000"})

    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */1000"
    assert response.json()["statusCode"] == 416


def test_stream_response_carries_request_id(client, make_video):
    video = make_video(size=10)

    response = client.get(f"/stream/{video.id}", headers={"X-Request-ID": "req-123"})

    assert response.headers["x-request-id"] == "req-123"
