from __future__ import annotations

import pytest

from app.core.errors import NotFound, PreconditionFailed, ValidationFailed
from app.core.extensions import db
from app.core.models import HistorialAccion, HistorialTramite, Tramite, TramiteEstado
from app.tramites.observaciones import create_observacion, resolve_observacion
from app.tramites.services import fork_tramite, open_tramite, read_tramite, version_chain


def _fork(users, docs, tramite_id, doc="contrato_v2", motivo="Documento corregido"):
    return fork_tramite(
        tramite_id,
        {"id_documento": docs[doc], "motivo_reenvio": motivo},
        users["resp"],
    )


def test_direct_resubmission_links_to_root(app, users, docs, new_tramite, sink):
    root_id = new_tramite(estado="LEIDO")

    nuevo = _fork(users, docs, root_id)

    assert nuevo.numero_version == 2
    assert nuevo.es_reenvio is True
    assert nuevo.id_tramite_original == root_id
    assert db.session.get(Tramite, root_id).estado == TramiteEstado.LEIDO
    entry = HistorialTramite.query.filter_by(id_tramite=nuevo.id).one()
    assert entry.accion == HistorialAccion.REENVIO
    assert entry.datos_adicionales["tramite_original"] == root_id
    assert entry.datos_adicionales["numero_version"] == 2
    assert "TRAMITE_REENVIADO" in sink.kinds_for(users["trab"])


def test_numbering_through_intermediate_versions(app, users, docs, new_tramite):
    root_id = new_tramite(estado="LEIDO")

    v2 = _fork(users, docs, root_id)
    v3 = _fork(users, docs, v2.id, motivo="Segunda correccion")

    open_tramite(v3.id, users["trab"])
    read_tramite(v3.id, users["trab"])
    observacion = create_observacion(
        v3.id,
        {"tipo": "CORRECCION_REQUERIDA", "descripcion": "Falta la clausula de horario"},
        users["trab"],
    )
    v4 = resolve_observacion(
        observacion.id,
        {"respuesta": "Agregada", "incluye_reenvio": True, "id_documento_corregido": docs["contrato_v2"]},
        users["resp"],
    )["tramite_reenvio"]

    assert [v2.numero_version, v3.numero_version, v4.numero_version] == [2, 3, 4]
    assert {v2.id_tramite_original, v3.id_tramite_original, v4.id_tramite_original} == {root_id}
    chain = version_chain(v3.id)
    assert [t.id for t in chain] == [root_id, v2.id, v3.id, v4.id]
    assert [t.numero_version for t in chain] == [1, 2, 3, 4]
    assert db.session.get(Tramite, v3.id).estado == TramiteEstado.LEIDO


def test_flags_come_from_the_new_document(app, users, docs, new_tramite):
    root_id = new_tramite(estado="LEIDO")

    nuevo = _fork(users, docs, root_id, doc="memorando")

    assert nuevo.requiere_firma is False
    assert nuevo.requiere_respuesta is True


def test_resubmission_of_annulled_tramite_keeps_original_state(app, users, docs, new_tramite):
    from app.tramites.services import annul_tramite

    root_id = new_tramite()
    annul_tramite(root_id, users["resp"], "Datos erroneos")

    nuevo = _fork(users, docs, root_id)

    assert nuevo.estado == TramiteEstado.ENVIADO
    assert db.session.get(Tramite, root_id).estado == TramiteEstado.ANULADO


def test_fork_validations(app, users, docs, new_tramite):
    root_id = new_tramite(estado="LEIDO")

    with pytest.raises(PreconditionFailed):
        fork_tramite(root_id, {"id_documento": docs["contrato_v2"], "motivo_reenvio": "x"}, users["admin"])
    with pytest.raises(ValidationFailed):
        fork_tramite(root_id, {"id_documento": docs["contrato_v2"], "motivo_reenvio": " "}, users["resp"])
    with pytest.raises(NotFound):
        fork_tramite(root_id, {"id_documento": 9999, "motivo_reenvio": "x"}, users["resp"])
    with pytest.raises(NotFound):
        fork_tramite(9999, {"id_documento": docs["contrato_v2"], "motivo_reenvio": "x"}, users["resp"])

    assert Tramite.query.count() == 1
