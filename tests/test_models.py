"""Document access rules and serialisation."""

from docshare.models import Document, Permission, ShareEntry


def _doc(**overrides) -> Document:
    values = dict(
        title="Report",
        original_name="report.pdf",
        mime_type="application/pdf",
        size=3,
        blob_hash="Qm" + "a" * 44,
        ledger_document_id="0x" + "1" * 64,
        owner_id="owner",
    )
    values.update(overrides)
    return Document(**values)


def test_owner_has_owner_permission() -> None:
    doc = _doc()
    assert doc.is_owner("owner")
    assert doc.has_access("owner")
    assert doc.get_user_permission("owner") == "owner"
    assert not doc.is_shared


def test_stranger_has_no_access() -> None:
    doc = _doc()
    assert not doc.has_access("stranger")
    assert doc.get_user_permission("stranger") is None


def test_share_with_adds_and_updates() -> None:
    doc = _doc()
    assert doc.share_with("bob", Permission.READ)
    assert doc.get_user_permission("bob") == "read"
    assert not doc.share_with("bob", Permission.READ)
    assert doc.share_with("bob", Permission.WRITE)
    assert doc.get_user_permission("bob") == "write"
    assert len(doc.shared_with) == 1


def test_share_with_owner_is_noop() -> None:
    doc = _doc()
    assert not doc.share_with("owner", Permission.WRITE)
    assert doc.shared_with == []


def test_unshare_with() -> None:
    doc = _doc()
    doc.share_with("bob")
    assert doc.unshare_with("bob")
    assert not doc.unshare_with("bob")
    assert not doc.has_access("bob")


def test_record_download_bumps_counter() -> None:
    doc = _doc()
    before = doc.last_accessed_at
    doc.record_download()
    doc.record_download()
    assert doc.download_count == 2
    assert doc.last_accessed_at >= before


def test_deactivate() -> None:
    doc = _doc()
    doc.deactivate()
    assert not doc.is_active


def test_share_entry_dict_shape() -> None:
    entry = ShareEntry(user_id="bob", permission=Permission.WRITE)
    raw = entry.to_dict()
    assert raw["user"] == "bob"
    assert raw["permissions"] == "write"
    assert ShareEntry.from_dict(raw) == entry


def test_detail_exposes_addresses_but_not_key() -> None:
    doc = _doc(is_encrypted=True, encryption_key="secret")
    view = doc.detail()
    assert view["ipfsHash"] == doc.blob_hash
    assert view["blockchainDocumentId"] == doc.ledger_document_id
    assert "encryptionKey" not in view
    assert "secret" not in repr(doc)
