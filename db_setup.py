import sqlite3

DB_NAME = "contacts.db"


def init_db(db_name: str = DB_NAME):
    conn = sqlite3.connect(db_name)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            CHECK (email IS NOT NULL OR phoneNumber IS NOT NULL),
            CHECK (
                (linkPrecedence = 'primary' AND linkedId IS NULL)
                OR (linkPrecedence = 'secondary' AND linkedId IS NOT NULL)
            ),
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)")
    conn.commit()

    conn.close()


def get_db_connection(db_name: str = DB_NAME):
    # autocommit mode; transactions are opened explicitly by the store
    conn = sqlite3.connect(db_name, isolation_level=None, timeout=10.0)
    conn.row_factory = sqlite3.Row
    return conn
