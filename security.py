import hmac
import logging
from datetime import datetime, timedelta
from functools import wraps
from flask import current_app, request, jsonify, session

logger = logging.getLogger(__name__)

# In-memory storage for failed attempts and blocked IPs
# In production, consider using Redis or a database
failed_attempts = {}
blocked_ips = {}
# Per-IP block count and time of the last block, for the backoff
blocked_history = {}

# Configuration
MAX_FAILED_ATTEMPTS = 5
INITIAL_BLOCK_TIME = 300  # 5 minutes
MAX_BLOCK_TIME = 86400    # 24 hours
EXPONENTIAL_BASE = 2      # Base for exponential backoff
ATTEMPT_WINDOW = 3600     # forget failures older than an hour
SESSION_TIMEOUT = 86400   # 24 hours, same as the original auth cookie


def get_client_ip():
    """Get the client's IP address, handling proxies."""
    if request.headers.getlist("X-Forwarded-For"):
        return request.headers.getlist("X-Forwarded-For")[0]
    return request.remote_addr


def check_password(password):
    """Compare against the configured admin password. No password configured means no admin access."""
    expected = current_app.config.get('ADMIN_PASSWORD')
    if not expected or not isinstance(password, str):
        return False
    return hmac.compare_digest(password.encode(), expected.encode())


def cleanup_old_entries(now=None):
    """Drop stale failed attempts, expired blocks and old block history."""
    now = now or datetime.now()
    for ip in [ip for ip, data in failed_attempts.items()
               if (now - data['last_attempt']).total_seconds() >= ATTEMPT_WINDOW]:
        del failed_attempts[ip]
    for ip in [ip for ip, data in blocked_ips.items() if now >= data['blocked_until']]:
        del blocked_ips[ip]
    # Backoff resets once an IP has gone a full day without being blocked
    for ip in [ip for ip, data in blocked_history.items()
               if ip not in blocked_ips
               and (now - data['last_blocked']).total_seconds() >= MAX_BLOCK_TIME]:
        del blocked_history[ip]


def is_ip_blocked(ip):
    """Check if an IP is currently blocked."""
    if ip in blocked_ips:
        if datetime.now() < blocked_ips[ip]['blocked_until']:
            return True, blocked_ips[ip]['blocked_until']
        # Block expired, remove it
        del blocked_ips[ip]
    return False, None


def record_failed_attempt(ip):
    """Record a failed login attempt and block if necessary."""
    now = datetime.now()
    cleanup_old_entries(now)

    if ip not in failed_attempts:
        failed_attempts[ip] = {
            'count': 0,
            'first_attempt': now,
            'last_attempt': now,
            'blocks': blocked_history.get(ip, {}).get('blocks', 0),
        }

    attempt = failed_attempts[ip]
    attempt['count'] += 1
    attempt['last_attempt'] = now

    if attempt['count'] >= MAX_FAILED_ATTEMPTS:
        # Each block for the same IP doubles, capped at MAX_BLOCK_TIME
        block_time = min(
            INITIAL_BLOCK_TIME * (EXPONENTIAL_BASE ** attempt['blocks']),
            MAX_BLOCK_TIME
        )
        blocked_until = now + timedelta(seconds=block_time)
        blocked_ips[ip] = {
            'blocked_until': blocked_until,
            'block_time': block_time
        }
        blocked_history[ip] = {'blocks': attempt['blocks'] + 1, 'last_blocked': now}
        # Reset failed attempts after blocking
        del failed_attempts[ip]
        logger.warning(f"Blocked IP {ip} for {block_time} seconds after repeated failed logins")
        return blocked_until

    return None


def reset_failed_attempts(ip):
    """Reset failed attempts counter for an IP."""
    if ip in failed_attempts:
        del failed_attempts[ip]


def reset_all():
    """Forget every failed attempt and block."""
    failed_attempts.clear()
    blocked_ips.clear()
    blocked_history.clear()


def get_remaining_block_time(ip):
    """Get remaining block time in seconds for an IP."""
    if ip in blocked_ips:
        remaining = (blocked_ips[ip]['blocked_until'] - datetime.now()).total_seconds()
        return max(0, int(remaining))
    return 0


def _blocked_response(retry_after, message="Too many failed attempts. Please try again later."):
    return (
        jsonify({
            "success": False,
            "error": message,
            "retry_after": retry_after
        }),
        429,
        {"Retry-After": str(retry_after)}
    )


def login(password):
    """
    Check the admin password for the current client and start an admin
    session. Returns a Flask response tuple.
    """
    ip = get_client_ip()
    is_blocked, blocked_until = is_ip_blocked(ip)
    if is_blocked:
        return _blocked_response(get_remaining_block_time(ip))

    if not check_password(password):
        logger.warning(f"Failed login attempt from IP: {ip}")
        blocked_until = record_failed_attempt(ip)
        if blocked_until:
            return _blocked_response(
                get_remaining_block_time(ip),
                "Too many failed attempts. Your IP has been temporarily blocked."
            )
        return jsonify({"success": False, "error": "Invalid password"}), 401

    logger.info(f"Successful login from IP: {ip}")
    reset_failed_attempts(ip)
    session.clear()
    session['authenticated'] = True
    session['ip_address'] = ip
    session['last_activity'] = datetime.now().timestamp()
    session.permanent = True
    return jsonify({"success": True, "message": "Authentication successful"}), 200


def logout():
    session.clear()


def is_authenticated():
    if not session.get('authenticated'):
        return False
    last_activity = session.get('last_activity', 0)
    if datetime.now().timestamp() - last_activity > SESSION_TIMEOUT:
        session.clear()
        logger.warning(f"Session expired for IP: {get_client_ip()}")
        return False
    session['last_activity'] = datetime.now().timestamp()
    return True


def check_ip_block():
    """Decorator to check if the client's IP is blocked."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            ip = get_client_ip()
            is_blocked, blocked_until = is_ip_blocked(ip)

            if is_blocked:
                return _blocked_response(int((blocked_until - datetime.now()).total_seconds()))

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def requires_auth(f):
    @wraps(f)
    @check_ip_block()
    def decorated(*args, **kwargs):
        if not is_authenticated():
            return jsonify({"success": False, "error": "Authentication required"}), 401
        return f(*args, **kwargs)
    return decorated
