"""Reason and warning texts shown alongside eligibility decisions."""

import os
from typing import Dict, List, Optional

from eligibility_engine.models import Action, EligibilityVerdict, ImpedimentKind, ViewerRole


ELIGIBLE_REASON = "Aluno apto para emissão do certificado"
RECORDS_UNAVAILABLE_REASON = (
    "Registros de presença e notas indisponíveis; elegibilidade não confirmada"
)


def get_support_info() -> Dict[str, str]:
    """Get back-office contact from environment or defaults."""
    return {
        'name': os.getenv('SUPPORT_NAME', 'Secretaria Acadêmica'),
        'email': os.getenv('SUPPORT_EMAIL', 'secretaria@example.com')
    }


def build_reason(absence_count: int, failing_grades: Dict[str, float]) -> str:
    """
    Describe the impediments found by a local eligibility check.

    Grade impediments always mention "nota", which is how impediments are
    told apart downstream for remote and local verdicts alike.
    """
    parts: List[str] = []
    if absence_count > 0:
        parts.append(f"Aluno possui {absence_count} falta(s) registrada(s)")
    if failing_grades:
        grades = ", ".join(f"{label}: {value:.1f}" for label, value in failing_grades.items())
        parts.append(f"Aluno possui nota insuficiente ({grades})")
    if not parts:
        return ELIGIBLE_REASON
    return "; ".join(parts)


def build_notice(
    verdict: EligibilityVerdict,
    impediment: ImpedimentKind,
    action: Action,
    viewer_role: ViewerRole
) -> Optional[str]:
    """Text shown with a blocked or warned decision; None when allowed."""
    if action == Action.ALLOWED:
        return None
    if action == Action.BLOCKED:
        return _blocked_notice(verdict, impediment)
    return _warning_notice(verdict, impediment, viewer_role)


def _impediment_label(impediment: ImpedimentKind) -> str:
    if impediment == ImpedimentKind.GRADE:
        return "nota abaixo da mínima"
    return "faltas registradas"


def _blocked_notice(verdict: EligibilityVerdict, impediment: ImpedimentKind) -> str:
    support = get_support_info()
    return (
        f"Certificado indisponível: {_impediment_label(impediment)}. "
        f"{verdict.reason}. "
        f"Em caso de dúvida, contate {support['name']} ({support['email']})."
    )


def _warning_notice(
    verdict: EligibilityVerdict,
    impediment: ImpedimentKind,
    viewer_role: ViewerRole
) -> str:
    who = "instrutor" if viewer_role == ViewerRole.INSTRUCTOR else "equipe"
    return (
        f"Atenção: aluno com pendência ({_impediment_label(impediment)}). "
        f"{verdict.reason}. "
        f"A emissão pelo {who} fica registrada sob sua responsabilidade."
    )
