"""
notifier.py
-----------
Alertas al usuario cuando el motor no aprueba directamente un pago.

Implementaciones de Notifier:
  - EmailNotifier → SMTP asíncrono con aiosmtplib
  - LogNotifier   → solo registra la alerta (SMTP no configurado)

Ambas son fire-and-forget: nunca lanzan excepciones. El pipeline las
invoca con asyncio.create_task() después de persistir la decisión, así
que un fallo de entrega no afecta la decisión ya tomada.

El destinatario se arma como {user_id}@{ALERT_EMAIL_DOMAIN}; el
directorio real de correos vive en el servicio de usuarios externo.
"""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from motor_riesgo.domain.entities import Decision
from motor_riesgo.domain.schemas import DecisionAction

logger = logging.getLogger(__name__)

_SUBJECTS = {
    DecisionAction.WARN:  "Confirma tu pago — actividad inusual detectada",
    DecisionAction.DELAY: "Tu pago quedó en espera de seguridad",
    DecisionAction.BLOCK: "Pago bloqueado por seguridad",
}


class LogNotifier:

    async def alert(self, user_id: str, decision: Decision, summary: dict) -> None:
        logger.info(
            f"[Notifier] ALERTA user={user_id}  action={decision.action.value}  "
            f"score={decision.score}  payee={summary.get('payee')}  "
            f"amount={summary.get('amount')}"
        )

    async def circle_alert(
        self, user_id: str, reporter_id: str, identifier: str, reason: str | None
    ) -> None:
        logger.info(
            f"[Notifier] ALERTA CÍRCULO user={user_id}  reporter={reporter_id}  "
            f"payee={identifier}  reason={reason}"
        )


class EmailNotifier:

    def __init__(
        self,
        hostname:  str,
        port:      int,
        username:  str | None,
        password:  str | None,
        sender:    str,
        domain:    str,
    ) -> None:
        self.hostname = hostname
        self.port     = port
        self.username = username
        self.password = password
        self.sender   = sender
        self.domain   = domain

    async def _send(self, to: str, subject: str, html: str) -> bool:
        """Retorna True si se envió correctamente, False si hubo error."""
        message = MIMEMultipart("alternative")
        message["From"]    = self.sender
        message["To"]      = to
        message["Subject"] = subject
        message.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname  = self.hostname,
                port      = self.port,
                username  = self.username,
                password  = self.password,
                start_tls = True,
            )
            logger.info(f"[Notifier] Email enviado a {to} — asunto: {subject}")
            return True

        except aiosmtplib.SMTPException as e:
            logger.error(f"[Notifier] Error SMTP enviando a {to}: {e}")
        except Exception as e:
            logger.error(f"[Notifier] Error inesperado enviando a {to}: {e}")

        return False

    # ------------------------------------------------------------------ #
    #  Templates                                                          #
    # ------------------------------------------------------------------ #

    async def alert(self, user_id: str, decision: Decision, summary: dict) -> None:
        reasons = "".join(f"<li>{r}</li>" for r in decision.reasons[:5])
        html = f"""
        <html lang="es">
        <body style="font-family:Arial,sans-serif; color:#333333;">
            <h2 style="color:#1a1a2e;">{summary.get('message', 'Aviso de seguridad')}</h2>
            <p>Destinatario: <strong>{summary.get('payee')}</strong></p>
            <p>Monto: <strong>{summary.get('amount')}</strong></p>
            <p>Score de riesgo: <strong>{decision.score}/100</strong></p>
            <ul>{reasons}</ul>
        </body>
        </html>
        """
        await self._send(
            to      = f"{user_id}@{self.domain}",
            subject = _SUBJECTS.get(decision.action, "Aviso de seguridad de tu pago"),
            html    = html,
        )

    async def circle_alert(
        self, user_id: str, reporter_id: str, identifier: str, reason: str | None
    ) -> None:
        html = f"""
        <html lang="es">
        <body style="font-family:Arial,sans-serif; color:#333333;">
            <h2 style="color:#1a1a2e;">Alerta de tu círculo de confianza</h2>
            <p>Un contacto de confianza reportó al destinatario
               <strong>{identifier}</strong> como posible fraude.</p>
            <p>Motivo: {reason or 'sin detalle'}</p>
            <p>Verifica antes de enviarle dinero.</p>
        </body>
        </html>
        """
        await self._send(
            to      = f"{user_id}@{self.domain}",
            subject = "Un contacto de tu círculo reportó un destinatario",
            html    = html,
        )
