from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from memberauth.adapters import database
from memberauth.adapters.bot_challenge import BotChallengeVerifier, get_bot_verifier
from memberauth.adapters.email import get_email_adapter
from memberauth.adapters.notifier import EmailNotifier, Notifier
from memberauth.adapters.template_renderer import JinjaTemplateRenderer
from memberauth.adapters.url_generator import StaticURLGenerator, URLGenerator
from memberauth.config import SecurityPolicy, get_db_uri, get_reset_link_base_url
from memberauth.service_layer import unit_of_work


@dataclass
class Collaborators:
    """Everything the authentication services need that lives outside the core."""

    uow: unit_of_work.AbstractUnitOfWork
    bot_verifier: BotChallengeVerifier
    notifier: Notifier
    url_generator: URLGenerator
    policy: SecurityPolicy


def bootstrap(
    start_orm: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    session_factory: sessionmaker | None = None,
) -> unit_of_work.AbstractUnitOfWork:
    if start_orm:
        database.start_mappers()

    if uow is None:
        if session_factory is None:
            session_factory = database.create_session_factory(get_db_uri())
        uow = unit_of_work.SqlAlchemyUnitOfWork(session_factory)

    return uow


def bootstrap_collaborators(
    start_orm: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    session_factory: sessionmaker | None = None,
    bot_verifier: BotChallengeVerifier | None = None,
    notifier: Notifier | None = None,
    url_generator: URLGenerator | None = None,
    policy: SecurityPolicy | None = None,
) -> Collaborators:
    policy = policy or SecurityPolicy.from_env()
    return Collaborators(
        uow=bootstrap(start_orm=start_orm, uow=uow, session_factory=session_factory),
        bot_verifier=bot_verifier or get_bot_verifier(),
        notifier=notifier
        or EmailNotifier(
            email_adapter=get_email_adapter(),
            template_renderer=JinjaTemplateRenderer(),
            otp_lifetime=policy.email_otp_lifetime,
            reset_link_lifetime=policy.reset_token_lifetime,
        ),
        url_generator=url_generator or StaticURLGenerator(get_reset_link_base_url()),
        policy=policy,
    )
