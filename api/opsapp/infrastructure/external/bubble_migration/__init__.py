"""
Motor de migración masiva/incremental: Bubble Data API -> PostgreSQL.

Copia el grafo completo de entidades (companies, users, clients, ...) emitiendo
UUIDs nuevos en destino y preservando todas las referencias cruzadas.

Objetivos de diseño:
- Idempotencia: UPSERT por `bubble_id`; se puede ejecutar N veces sin duplicar.
- Incremental: restricción "Modified Date > since" en cada fetch; los mapas de
  identidad se siembran desde el destino para que lo no re-leído siga resolviendo.
- Integridad: una columna de referencia nunca se escribe con un id de Bubble.
  Si una referencia requerida no resuelve, el registro se omite completo.
- Fallos parciales: un registro o una página fallida no aborta la corrida.
"""
