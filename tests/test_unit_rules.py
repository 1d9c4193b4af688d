from __future__ import annotations

import re

import pytest

from app.core.errors import NotFound, PreconditionFailed, ValidationFailed
from app.core.extensions import db
from app.core.models import (
    Documento,
    HistorialAccion,
    HistorialTramite,
    Notificacion,
    RespuestaTramite,
    Tramite,
    TramiteEstado,
)
from app.tramites.services import (
    TRAMITE_TRANSITIONS,
    annul_tramite,
    create_respuesta,
    create_tramite,
    create_tramites_bulk,
    list_tramites,
    open_tramite,
    read_tramite,
    tramite_detail,
    tramite_statistics,
    verify_and_sign,
)
from app.tramites.verificacion import issue_code

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _actions(tramite_id):
    return [
        h.accion
        for h in HistorialTramite.query.filter_by(id_tramite=tramite_id).order_by(HistorialTramite.id).all()
    ]


def test_transition_table_only_moves_forward():
    progress = {
        TramiteEstado.ENVIADO: 0,
        TramiteEstado.ABIERTO: 1,
        TramiteEstado.LEIDO: 2,
        TramiteEstado.FIRMADO: 3,
        TramiteEstado.RESPONDIDO: 3,
        TramiteEstado.ANULADO: 3,
    }
    for current, targets in TRAMITE_TRANSITIONS.items():
        for target in targets:
            assert progress[target] > progress[current]
    for terminal in (TramiteEstado.FIRMADO, TramiteEstado.RESPONDIDO, TramiteEstado.ANULADO):
        assert TRAMITE_TRANSITIONS[terminal] == set()


def test_create_copies_flags_and_notifies_receiver(app, users, docs, sink):
    tramite = create_tramite(
        {"id_documento": docs["contrato"], "id_receptor": users["trab"], "asunto": "Contrato anual"},
        users["resp"],
    )

    assert tramite.estado == TramiteEstado.ENVIADO
    assert tramite.requiere_firma is True
    assert tramite.requiere_respuesta is False
    assert re.fullmatch(r"TRAM-\d{4}-000001", tramite.codigo)
    assert tramite.id_area_remitente is not None
    assert tramite.numero_version == 1
    assert _actions(tramite.id) == [HistorialAccion.CREACION]
    assert sink.kinds_for(users["trab"]) == ["TRAMITE_RECIBIDO", "DOCUMENTO_REQUIERE_FIRMA"]
    assert Notificacion.query.filter_by(id_usuario=users["trab"]).count() == 2


def test_sequential_codes(app, new_tramite):
    first = db.session.get(Tramite, new_tramite())
    second = db.session.get(Tramite, new_tramite(doc="memorando"))
    assert first.codigo.endswith("000001")
    assert second.codigo.endswith("000002")


def test_create_validations(app, users, docs):
    payload = {"id_documento": docs["contrato"], "id_receptor": users["trab"], "asunto": "X"}

    with pytest.raises(PreconditionFailed):
        create_tramite(payload, users["trab"])
    with pytest.raises(PreconditionFailed):
        create_tramite({**payload, "id_receptor": users["inactivo"]}, users["resp"])
    with pytest.raises(PreconditionFailed):
        create_tramite({**payload, "id_receptor": users["resp"]}, users["admin"])
    with pytest.raises(NotFound):
        create_tramite({**payload, "id_receptor": 9999}, users["resp"])
    with pytest.raises(NotFound):
        create_tramite({**payload, "id_documento": 9999}, users["resp"])
    with pytest.raises(ValidationFailed):
        create_tramite({**payload, "asunto": "  "}, users["resp"])
    with pytest.raises(ValidationFailed):
        create_tramite({**payload, "id_receptor": "abc"}, users["resp"])
    with pytest.raises(ValidationFailed):
        create_tramite({**payload, "id_documento": "²"}, users["resp"])
    with pytest.raises(ValidationFailed):
        create_tramite({**payload, "id_receptor": "١٢"}, users["resp"])

    assert Tramite.query.count() == 0


def test_document_without_type_is_rejected(app, users):
    doc = Documento(titulo="Sin tipo", creado_por=users["resp"])
    db.session.add(doc)
    db.session.commit()

    with pytest.raises(NotFound, match="Tipo de documento"):
        create_tramite({"id_documento": doc.id, "id_receptor": users["trab"], "asunto": "X"}, users["resp"])


def test_open_then_read_stamps_each_timestamp_once(app, users, new_tramite):
    tramite_id = new_tramite()

    with pytest.raises(PreconditionFailed):
        read_tramite(tramite_id, users["trab"])
    with pytest.raises(PreconditionFailed):
        open_tramite(tramite_id, users["trab2"])

    tramite = open_tramite(tramite_id, users["trab"])
    assert tramite.estado == TramiteEstado.ABIERTO
    fecha_abierto = tramite.fecha_abierto
    assert fecha_abierto is not None

    with pytest.raises(PreconditionFailed):
        open_tramite(tramite_id, users["trab"])

    tramite = read_tramite(tramite_id, users["trab"])
    assert tramite.estado == TramiteEstado.LEIDO
    assert tramite.fecha_leido is not None
    assert tramite.fecha_abierto == fecha_abierto
    assert _actions(tramite_id) == [
        HistorialAccion.CREACION,
        HistorialAccion.APERTURA,
        HistorialAccion.LECTURA,
    ]


def test_conformity_response_scenario(app, users, new_tramite, sink):
    tramite_id = new_tramite(doc="memorando", estado="LEIDO")

    respuesta = create_respuesta(tramite_id, {"acepta_conformidad": True}, users["trab"], "10.0.0.1", CHROME_WINDOWS)

    tramite = db.session.get(Tramite, tramite_id)
    assert tramite.estado == TramiteEstado.RESPONDIDO
    assert tramite.fecha_respondido is not None
    assert respuesta.texto_respuesta == "Conforme"
    assert respuesta.esta_conforme is True
    assert respuesta.navegador == "Google Chrome"
    assert RespuestaTramite.query.filter_by(id_tramite=tramite_id).count() == 1
    assert "RESPUESTA_RECIBIDA" in sink.kinds_for(users["resp"])

    with pytest.raises(PreconditionFailed):
        create_respuesta(tramite_id, {"acepta_conformidad": True}, users["trab"], "10.0.0.1", CHROME_WINDOWS)
    assert _actions(tramite_id)[-1] == HistorialAccion.RESPUESTA


def test_conformity_requires_acceptance_and_flag(app, users, new_tramite):
    tramite_id = new_tramite(doc="memorando", estado="LEIDO")
    with pytest.raises(ValidationFailed):
        create_respuesta(tramite_id, {"acepta_conformidad": False}, users["trab"], "", "")
    assert db.session.get(Tramite, tramite_id).estado == TramiteEstado.LEIDO

    firma_only = new_tramite(doc="contrato", estado="LEIDO")
    with pytest.raises(PreconditionFailed):
        create_respuesta(firma_only, {"acepta_conformidad": True}, users["trab"], "", "")

    not_read = new_tramite(doc="memorando", estado="ABIERTO")
    with pytest.raises(PreconditionFailed):
        create_respuesta(not_read, {"acepta_conformidad": True}, users["trab"], "", "")


def test_annul_signed_tramite_is_rejected_without_history(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "10.0.0.1", CHROME_WINDOWS)
    verify_and_sign(tramite_id, users["trab"], mailer.last_code, True, "10.0.0.1", CHROME_WINDOWS)
    before = _actions(tramite_id)

    with pytest.raises(PreconditionFailed):
        annul_tramite(tramite_id, users["resp"], "Error de redaccion")

    tramite = db.session.get(Tramite, tramite_id)
    assert tramite.estado == TramiteEstado.FIRMADO
    assert tramite.fecha_anulado is None
    assert _actions(tramite_id) == before


def test_annul_rules(app, users, new_tramite, sink):
    tramite_id = new_tramite(estado="ABIERTO")

    with pytest.raises(ValidationFailed):
        annul_tramite(tramite_id, users["resp"], "   ")
    with pytest.raises(PreconditionFailed):
        annul_tramite(tramite_id, users["trab"], "No corresponde")

    tramite = annul_tramite(tramite_id, users["admin"], "Documento duplicado")
    assert tramite.estado == TramiteEstado.ANULADO
    assert tramite.anulado_por == users["admin"]
    assert tramite.motivo_anulacion == "Documento duplicado"
    assert tramite.fecha_anulado is not None
    assert "TRAMITE_ANULADO" in sink.kinds_for(users["trab"])

    with pytest.raises(PreconditionFailed):
        open_tramite(tramite_id, users["trab"])


def test_remitter_can_annul_read_tramite(app, users, new_tramite):
    tramite_id = new_tramite(estado="LEIDO")
    tramite = annul_tramite(tramite_id, users["resp"], "Se envio por error")
    assert tramite.estado == TramiteEstado.ANULADO
    assert _actions(tramite_id)[-1] == HistorialAccion.ANULACION


def test_bulk_create_is_all_or_nothing(app, users, docs):
    with pytest.raises(PreconditionFailed):
        create_tramites_bulk(
            {
                "id_documento": docs["comunicado"],
                "id_receptores": [users["trab"], users["inactivo"]],
                "asunto": "Vacaciones",
            },
            users["resp"],
        )
    assert Tramite.query.count() == 0

    tramites = create_tramites_bulk(
        {
            "id_documento": docs["comunicado"],
            "id_receptores": [users["trab"], users["trab2"], users["trab"]],
            "asunto": "Vacaciones",
        },
        users["resp"],
    )
    assert len(tramites) == 2
    assert {t.id_receptor for t in tramites} == {users["trab"], users["trab2"]}
    assert len({t.codigo for t in tramites}) == 2


def test_list_is_scoped_by_role(app, users, new_tramite):
    new_tramite()
    new_tramite(doc="memorando", estado="ABIERTO")

    assert list_tramites({}, users["trab"])["total"] == 2
    assert list_tramites({}, users["trab2"])["total"] == 0
    assert list_tramites({}, users["admin"])["total"] == 2
    assert list_tramites({}, users["resp"])["total"] == 2

    abiertos = list_tramites({"estado": "abierto"}, users["trab"])
    assert abiertos["total"] == 1
    assert abiertos["rows"][0].estado == TramiteEstado.ABIERTO

    firma = list_tramites({"requiere_firma": "true"}, users["admin"])
    assert [t.requiere_firma for t in firma["rows"]] == [True]

    paged = list_tramites({"page": "2", "page_size": "1", "ordenar_por": "codigo", "orden": "asc"}, users["admin"])
    assert paged["pages"] == 2
    assert paged["rows"][0].codigo.endswith("000002")

    with pytest.raises(ValidationFailed):
        list_tramites({"estado": "PERDIDO"}, users["admin"])


def test_detail_access_and_statistics(app, users, new_tramite):
    tramite_id = new_tramite(estado="LEIDO")
    new_tramite(doc="memorando")

    detail = tramite_detail(tramite_id, users["trab"])
    assert detail["tramite"].id == tramite_id
    assert [t.id for t in detail["versiones"]] == [tramite_id]
    with pytest.raises(PreconditionFailed):
        tramite_detail(tramite_id, users["trab2"])

    stats = tramite_statistics(users["admin"])
    assert stats["total"] == 2
    assert stats["por_estado"]["LEIDO"] == 1
    assert stats["por_estado"]["ENVIADO"] == 1
    assert stats["pendientes_firma"] == 1
    assert stats["por_area"][0]["total"] == 2
