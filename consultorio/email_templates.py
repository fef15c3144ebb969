"""
MJML Email Templates
Patient and doctor facing emails, compiled to HTML by the email service
"""

from datetime import datetime
from typing import Optional

THEME = {
    "primary": "#0ea5e9",
    "primary_dark": "#0369a1",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
}

MONTHS_ES = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)


def format_date_es(value: Optional[datetime]) -> str:
    """Long Spanish date, e.g. '15 de marzo de 2025'"""
    if not value:
        return ""
    return f"{value.day} de {MONTHS_ES[value.month - 1]} de {value.year}"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    organization_name: str = "Consultorio",
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 0 40px">
          <mj-column>
            <mj-text font-size="14px" font-weight="600" color="{THEME['primary_dark']}" padding="0">
              {organization_name}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="16px 0 24px 0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 40px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="12px" color="#94a3b8" padding="0">
              Este es un correo automático, por favor no responda a este mensaje.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def consultation_report_template(
    patient_name: str,
    doctor_name: str,
    organization_name: str,
    consultation_date: Optional[datetime],
    report_url: str,
    rating_url: str,
) -> str:
    """Post-consultation email with the report link and a rating invitation"""
    content = f"""
    <mj-text>
      Hola {patient_name},
    </mj-text>

    <mj-text>
      Su informe de la consulta del <strong>{format_date_es(consultation_date)}</strong>
      con {doctor_name} ya está disponible.
    </mj-text>

    <mj-text color="{THEME['text_muted']}" font-size="14px">
      ¿Cómo fue su experiencia? Puede calificar la consulta
      <a href="{rating_url}" style="color: {THEME['primary_dark']};">aquí</a>.
    </mj-text>
    """
    return get_base_template(
        title="Informe Médico",
        preview_text=f"Su informe médico de {organization_name} está listo",
        content_sections=content,
        cta_url=report_url,
        cta_label="Ver informe",
        organization_name=organization_name,
    )


def registration_invitation_template(
    patient_name: str, organization_name: str, register_url: str
) -> str:
    """Invite a patient without an account to register"""
    content = f"""
    <mj-text>
      Hola {patient_name},
    </mj-text>

    <mj-text>
      {organization_name} registra sus consultas en nuestra plataforma. Cree su cuenta
      para ver su historial, sus informes y sus próximas citas en un solo lugar.
    </mj-text>
    """
    return get_base_template(
        title="Cree su cuenta de paciente",
        preview_text="Acceda a sus informes y citas",
        content_sections=content,
        cta_url=register_url,
        cta_label="Registrarme",
        organization_name=organization_name,
    )


def notification_email_template(
    recipient_name: str, title: str, message: str, action_url: Optional[str] = None
) -> str:
    content = f"""
    <mj-text>
      Hola {recipient_name},
    </mj-text>

    <mj-text>
      {message}
    </mj-text>
    """
    return get_base_template(
        title=title,
        preview_text=message[:90],
        content_sections=content,
        cta_url=action_url,
        cta_label="Ver en el panel" if action_url else None,
    )
