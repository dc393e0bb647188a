DEFAULT_TRANSLATIONS = {
    "en": {
        "lang": "en",
        "subject": "Your subscription was updated",
        "heading": "Subscription updated",
        "body": "You are on the {plan_name} plan. Current status: {status}.",
        "credits_reset": "Your credits have been reset for the new billing period.",
        "cta": "Review your plan",
        "footer": "You are receiving this email because you subscribed to Launchpad.",
    },
    "es": {
        "lang": "es",
        "subject": "Tu suscripción se ha actualizado",
        "heading": "Suscripción actualizada",
        "body": "Estás en el plan {plan_name}. Estado actual: {status}.",
        "credits_reset": "Tus créditos se han restablecido para el nuevo periodo.",
        "cta": "Revisar tu plan",
        "footer": "Recibes este correo porque te suscribiste a Launchpad.",
    },
}
