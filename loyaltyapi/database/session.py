from fastapi import Request


def get_db(request: Request):
    # 앱 컨테이너의 설정(create_app(settings))을 따르는 세션
    db = request.app.container.services.session_factory()()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            db.rollback()
        raise
    finally:
        db.close()
