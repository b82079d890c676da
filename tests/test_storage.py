import pytest

import storage
from errors import InvalidRequestError, NotFoundError


def test_build_path_uses_kind_folder_and_safe_name():
    path = storage.build_path("ticket-pdfs", "tx-1", "../../Entrada VIP #1.pdf")
    folder, owner, token, name = path.split("/")
    assert (folder, owner, name) == ("tickets", "tx-1", "Entrada_VIP_1.pdf")
    assert len(token) == 36


def test_unknown_kind():
    with pytest.raises(InvalidRequestError):
        storage.build_path("videos", "u", "a.mp4")


def test_upload_get_and_delete(db):
    url = storage.upload_file(db, "payment-proofs/u/1/proof.png", b"\x89PNG", "image/png")
    assert url == "/api/files/payment-proofs/u/1/proof.png"

    stored = storage.get_file(db, "payment-proofs/u/1/proof.png")
    assert stored["content"] == b"\x89PNG"
    assert stored["content_type"] == "image/png"
    assert stored["size"] == 4

    assert storage.delete_file(db, url) is True
    with pytest.raises(NotFoundError):
        storage.get_file(db, "payment-proofs/u/1/proof.png")


def test_upload_limits(db, monkeypatch):
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "3")
    with pytest.raises(InvalidRequestError):
        storage.upload_file(db, "x/y", b"", None)
    with pytest.raises(InvalidRequestError):
        storage.upload_file(db, "x/y", b"1234", None)
