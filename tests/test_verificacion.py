from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from app.core.config import VerificationSettings
from app.core.errors import DependencyFailure, LockedOut, PreconditionFailed, ValidationFailed
from app.core.extensions import db
from app.core.models import (
    CodigoVerificacionFirma,
    FirmaElectronica,
    HistorialAccion,
    HistorialTramite,
    Tramite,
    TramiteEstado,
    utcnow,
)
from app.tramites.services import sign_tramite, verify_and_sign
from app.tramites.verificacion import (
    CodigoValidado,
    _compare_and_set,
    _live_code,
    issue_code,
    validate_code,
    verification_statistics,
)

UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def _live_rows(tramite_id, user_id):
    return CodigoVerificacionFirma.query.filter_by(id_tramite=tramite_id, id_usuario=user_id, usado=False).all()


def test_issue_code_masks_email_and_persists_one_row(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")

    result = issue_code(tramite_id, users["trab"], "10.0.0.1", UA)

    assert result["email_enviado_a"] == "t***b@tramites.local"
    assert result["minutos_expiracion"] == 5
    rows = _live_rows(tramite_id, users["trab"])
    assert len(rows) == 1
    assert rows[0].codigo == mailer.last_code
    assert len(rows[0].codigo) == 6 and rows[0].codigo.isdigit()
    assert rows[0].email_destinatario == "trab@tramites.local"


def test_issue_code_preconditions(app, users, new_tramite):
    not_read = new_tramite(estado="ABIERTO")
    with pytest.raises(PreconditionFailed):
        issue_code(not_read, users["trab"], "", "")

    no_signature = new_tramite(doc="memorando", estado="LEIDO")
    with pytest.raises(PreconditionFailed):
        issue_code(no_signature, users["trab"], "", "")

    read = new_tramite(estado="LEIDO")
    with pytest.raises(PreconditionFailed):
        issue_code(read, users["resp"], "", "")

    assert CodigoVerificacionFirma.query.count() == 0


def test_reissue_keeps_a_single_live_code(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)
    first = mailer.last_code
    issue_code(tramite_id, users["trab"], "", UA)
    second = mailer.last_code

    live = _live_rows(tramite_id, users["trab"])
    assert len(live) == 1
    assert live[0].codigo == second
    assert CodigoVerificacionFirma.query.count() == 2

    if first != second:
        with pytest.raises(ValidationFailed):
            validate_code(tramite_id, users["trab"], first, "")


def test_lockout_scenario_and_correct_code_still_rejected(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)
    code = mailer.last_code
    wrong = _wrong(code)

    for remaining in (4, 3, 2, 1):
        with pytest.raises(ValidationFailed) as excinfo:
            validate_code(tramite_id, users["trab"], wrong, "")
        assert excinfo.value.details["intentos_restantes"] == remaining

    with pytest.raises(LockedOut):
        validate_code(tramite_id, users["trab"], wrong, "")
    with pytest.raises(LockedOut) as excinfo:
        validate_code(tramite_id, users["trab"], code, "")
    assert excinfo.value.details["minutos_restantes"] == 15

    row = CodigoVerificacionFirma.query.filter_by(id_tramite=tramite_id).one()
    assert row.usado is True
    assert row.intentos_fallidos == 5
    assert row.bloqueado_hasta is not None
    assert mailer.lockouts == [("trab@tramites.local", 15)]
    assert db.session.get(Tramite, tramite_id).estado == TramiteEstado.LEIDO


def test_lockout_applies_to_every_tramite_of_the_user(app, users, new_tramite, mailer):
    first = new_tramite(estado="LEIDO")
    second = new_tramite(estado="LEIDO", asunto="Segundo contrato")
    settings = VerificationSettings(expiracion_minutos=5, max_intentos=2, bloqueo_minutos=10)

    issue_code(second, users["trab"], "", UA, settings=settings)
    second_code = mailer.last_code
    issue_code(first, users["trab"], "", UA, settings=settings)
    wrong = _wrong(mailer.last_code)
    with pytest.raises(ValidationFailed):
        validate_code(first, users["trab"], wrong, "", settings=settings)
    with pytest.raises(LockedOut):
        validate_code(first, users["trab"], wrong, "", settings=settings)

    with pytest.raises(LockedOut):
        validate_code(second, users["trab"], second_code, "", settings=settings)
    with pytest.raises(LockedOut) as excinfo:
        issue_code(second, users["trab"], "", UA, settings=settings)
    assert excinfo.value.details["minutos_restantes"] == 10

    other_user = new_tramite(receptor="trab2", estado="LEIDO")
    issue_code(other_user, users["trab2"], "", UA, settings=settings)


def test_expired_code_is_consumed(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)
    db.session.execute(
        update(CodigoVerificacionFirma)
        .where(CodigoVerificacionFirma.id_tramite == tramite_id)
        .values(expira_en=utcnow() - timedelta(minutes=1))
    )
    db.session.commit()

    with pytest.raises(ValidationFailed, match="expirado"):
        validate_code(tramite_id, users["trab"], mailer.last_code, "")
    assert _live_rows(tramite_id, users["trab"]) == []

    with pytest.raises(ValidationFailed, match="No hay un codigo"):
        validate_code(tramite_id, users["trab"], mailer.last_code, "")


def test_email_failure_rolls_back_issuance(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)
    live_before = _live_rows(tramite_id, users["trab"])[0].id

    mailer.fail = True
    with pytest.raises(DependencyFailure):
        issue_code(tramite_id, users["trab"], "", UA)

    assert CodigoVerificacionFirma.query.count() == 1
    assert [r.id for r in _live_rows(tramite_id, users["trab"])] == [live_before]


def test_compare_and_set_rejects_stale_version(app, users, new_tramite):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)
    row = _live_code(tramite_id, users["trab"])
    seen_version = row.version

    db.session.execute(
        update(CodigoVerificacionFirma)
        .where(CodigoVerificacionFirma.id == row.id)
        .values(intentos_fallidos=1, version=seen_version + 1)
        .execution_options(synchronize_session=False)
    )
    assert _compare_and_set(row, intentos_fallidos=1) is False
    db.session.commit()

    fresh = _live_code(tramite_id, users["trab"])
    assert fresh.version == seen_version + 1
    assert _compare_and_set(fresh, intentos_fallidos=2) is True
    db.session.commit()
    assert _live_code(tramite_id, users["trab"]).intentos_fallidos == 2


def test_malformed_code_does_not_burn_attempts(app, users, new_tramite):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)

    with pytest.raises(ValidationFailed):
        validate_code(tramite_id, users["trab"], "12ab", "")
    assert _live_code(tramite_id, users["trab"]).intentos_fallidos == 0


def test_verify_and_sign_records_signature(app, users, new_tramite, mailer, sink):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "10.0.0.9", UA)

    firma = verify_and_sign(tramite_id, users["trab"], mailer.last_code, True, "10.0.0.9", UA)

    tramite = db.session.get(Tramite, tramite_id)
    assert tramite.estado == TramiteEstado.FIRMADO
    assert tramite.fecha_firmado is not None
    assert firma.navegador == "Google Chrome"
    assert firma.dispositivo == "Desktop - Windows"
    assert firma.ip_address == "10.0.0.9"
    assert CodigoVerificacionFirma.query.filter_by(id_tramite=tramite_id).one().usado is True
    last = HistorialTramite.query.filter_by(id_tramite=tramite_id).order_by(HistorialTramite.id.desc()).first()
    assert last.accion == HistorialAccion.FIRMA
    assert last.estado_anterior == TramiteEstado.LEIDO
    assert "TRAMITE_FIRMADO" in sink.kinds_for(users["resp"])


def test_terms_not_accepted_does_not_touch_code(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)

    with pytest.raises(ValidationFailed):
        verify_and_sign(tramite_id, users["trab"], _wrong(mailer.last_code), False, "", UA)

    row = _live_code(tramite_id, users["trab"])
    assert row.intentos_fallidos == 0
    assert FirmaElectronica.query.count() == 0


def test_sign_requires_matching_proof(app, users, new_tramite):
    tramite_id = new_tramite(estado="LEIDO")
    other_id = new_tramite(estado="LEIDO", asunto="Otro")

    with pytest.raises(PreconditionFailed):
        sign_tramite(tramite_id, users["trab"], CodigoValidado(other_id, users["trab"], 1), True, "", UA)
    with pytest.raises(PreconditionFailed):
        sign_tramite(tramite_id, users["trab"], None, True, "", UA)
    assert FirmaElectronica.query.count() == 0


def test_tramite_without_signature_flag_never_gets_firma(app, users, new_tramite):
    tramite_id = new_tramite(doc="memorando", estado="LEIDO")

    with pytest.raises(PreconditionFailed):
        verify_and_sign(tramite_id, users["trab"], "123456", True, "", UA)
    with pytest.raises(PreconditionFailed):
        sign_tramite(tramite_id, users["trab"], CodigoValidado(tramite_id, users["trab"], 1), True, "", UA)
    assert FirmaElectronica.query.filter_by(id_tramite=tramite_id).count() == 0


def test_verification_statistics(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)
    issue_code(tramite_id, users["trab"], "", UA)
    verify_and_sign(tramite_id, users["trab"], mailer.last_code, True, "", UA)

    stats = verification_statistics()
    assert stats["total_codigos"] == 2
    assert stats["codigos_usados"] == 2
    assert stats["firmas_exitosas"] == 1
    assert stats["usuarios_bloqueados"] == 0
    assert stats["tasa_exito"] == 50.0


def test_non_ascii_digits_are_rejected_as_malformed(app, users, new_tramite):
    tramite_id = new_tramite(estado="LEIDO")
    issue_code(tramite_id, users["trab"], "", UA)

    for codigo in ("١٢٣٤٥٦", "¹²³⁴⁵⁶", "１２３４５６"):
        with pytest.raises(ValidationFailed, match="6 digitos"):
            validate_code(tramite_id, users["trab"], codigo, "")
    assert _live_code(tramite_id, users["trab"]).intentos_fallidos == 0


def test_lockout_is_reported_before_code_format(app, users, new_tramite, mailer):
    tramite_id = new_tramite(estado="LEIDO")
    settings = VerificationSettings(expiracion_minutos=5, max_intentos=1, bloqueo_minutos=10)
    issue_code(tramite_id, users["trab"], "", UA, settings=settings)
    with pytest.raises(LockedOut):
        validate_code(tramite_id, users["trab"], _wrong(mailer.last_code), "", settings=settings)

    with pytest.raises(LockedOut) as excinfo:
        validate_code(tramite_id, users["trab"], "12ab", "", settings=settings)
    assert excinfo.value.details["minutos_restantes"] == 10
