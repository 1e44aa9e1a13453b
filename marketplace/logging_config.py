import logging
import os
from logging.handlers import RotatingFileHandler


def setup_logging(app):
    """Configure application, error and audit logs."""

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    audit_logger = logging.getLogger('audit')
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False

    service_logger = logging.getLogger('marketplace')
    service_logger.setLevel(logging.INFO)

    app.logger.setLevel(logging.INFO)

    if app.config.get('TESTING'):
        return

    log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, 'logs')
    os.makedirs(log_dir, exist_ok=True)

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.INFO)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'errors.log'),
        maxBytes=10485760,
        backupCount=10
    )
    error_handler.setFormatter(formatter)
    error_handler.setLevel(logging.ERROR)

    # Financial audit trail keeps a longer history
    audit_handler = RotatingFileHandler(
        os.path.join(log_dir, 'audit.log'),
        maxBytes=10485760,
        backupCount=20
    )
    audit_handler.setFormatter(formatter)
    audit_handler.setLevel(logging.INFO)

    app.logger.addHandler(file_handler)
    app.logger.addHandler(error_handler)
    service_logger.addHandler(file_handler)
    service_logger.addHandler(error_handler)
    audit_logger.addHandler(audit_handler)

    app.logger.info('Logging configured, writing to %s', log_dir)
